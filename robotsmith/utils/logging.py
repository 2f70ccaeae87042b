import logging

from pathlib import Path

console_logger = logging.getLogger(__name__)


class WarningCollector:
    """Accumulating sink for non-fatal degradations.

    Compile and build steps report recoverable problems (renamed identifiers,
    dropped inertia terms, missing meshes) by calling the collector. Each message is
    kept so it can be returned alongside the result and is also logged as a warning.
    """

    def __init__(self, logger: logging.Logger | None = None):
        self.messages: list[str] = []
        self._logger = logger or console_logger

    def __call__(self, message: str) -> None:
        self.messages.append(message)
        self._logger.warning(message)

    def extend(self, messages: list[str]) -> None:
        """Record messages that were already logged by another collector."""
        self.messages.extend(messages)

    def __len__(self) -> int:
        return len(self.messages)

    def __iter__(self):
        return iter(self.messages)


class FileLoggingContext:
    """Context manager to redirect all loggers to a per-run log file.

    This class captures ALL logging that occurs within its context.
    """

    def __init__(self, log_file_path: Path, suppress_stdout: bool = False):
        """
        Args:
            log_file_path: Path to the run's log file.
            suppress_stdout: If True, prevents logs from also going to stdout.
        """
        self.log_file_path = Path(log_file_path)
        self.suppress_stdout = suppress_stdout
        self.file_handler: logging.FileHandler | None = None
        self.original_handlers: list[logging.Handler] = []

    def __enter__(self):
        """Set up file handler and redirect all loggers."""
        self.log_file_path.parent.mkdir(parents=True, exist_ok=True)
        self.file_handler = logging.FileHandler(self.log_file_path)
        self.file_handler.setFormatter(
            logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s")
        )

        root_logger = logging.getLogger()
        root_logger.addHandler(self.file_handler)

        if self.suppress_stdout:
            # Keep the previous handlers so they can be restored on exit.
            self.original_handlers = root_logger.handlers[:]
            for handler in self.original_handlers:
                if handler != self.file_handler:
                    root_logger.removeHandler(handler)

        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        """Clean up handlers and restore original state."""
        root_logger = logging.getLogger()

        if self.file_handler in root_logger.handlers:
            root_logger.removeHandler(self.file_handler)

        if self.suppress_stdout and self.original_handlers:
            for handler in self.original_handlers:
                if handler != self.file_handler and handler not in root_logger.handlers:
                    root_logger.addHandler(handler)

        if self.file_handler:
            self.file_handler.close()
            self.file_handler = None

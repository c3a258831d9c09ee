"""
Structured Logger for the Onchain Eligibility Engine
Console, rotating file and JSON outputs plus evaluation and error records
"""

import json
import logging
import sys
import traceback
from datetime import datetime, timezone
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Any, Dict, Optional

from utils.constants import ENGINE_NAME

# Custom log level for evaluation records
EVALUATION_LOG = 25  # Between INFO and WARNING

logging.addLevelName(EVALUATION_LOG, "EVALUATION")

logger = logging.getLogger(__name__)


class StructuredLogger:
    """
    Structured logging system with multiple outputs
    """

    def __init__(self, name: str = ENGINE_NAME, config: Optional[Dict] = None):
        """Initialize structured logger"""
        self.name = name

        # Merge provided config into defaults
        default_config = self._default_config()
        if config:
            default_config.update({k: v for k, v in config.items() if v is not None})

        self.config = default_config
        self.setup_logging()

    def _default_config(self) -> Dict:
        """Default logging configuration"""
        return {
            "log_level": "INFO",
            "log_dir": "logs",
            "max_file_size": 10 * 1024 * 1024,  # 10MB
            "backup_count": 10,
            "format": "json",  # json or text
            "outputs": ["console"],
            "error_tracking": True
        }

    def _get_formatter(self, output_type: str) -> logging.Formatter:
        """Get appropriate formatter for output type"""
        if self.config["format"] == "json" and output_type != "console":
            return JsonFormatter()
        return ColoredFormatter() if output_type == "console" else StandardFormatter()

    def setup_logging(self, config: Optional[Dict] = None) -> None:
        """
        Setup logging configuration

        Args:
            config: Optional configuration dictionary
        """
        if config:
            self.config.update(config)

        root = logging.getLogger()
        root.setLevel(getattr(logging, str(self.config["log_level"]).upper(), logging.INFO))
        root.handlers = []

        if "console" in self.config["outputs"]:
            console_handler = logging.StreamHandler(sys.stdout)
            console_handler.setFormatter(self._get_formatter("console"))
            root.addHandler(console_handler)

        if "file" in self.config["outputs"]:
            log_dir = Path(self.config["log_dir"])
            log_dir.mkdir(parents=True, exist_ok=True)

            file_handler = RotatingFileHandler(
                log_dir / f"{self.name}.log",
                maxBytes=self.config["max_file_size"],
                backupCount=self.config["backup_count"]
            )
            file_handler.setFormatter(self._get_formatter("file"))
            root.addHandler(file_handler)

            # Separate error log
            if self.config["error_tracking"]:
                error_handler = RotatingFileHandler(
                    log_dir / f"{self.name}_errors.log",
                    maxBytes=self.config["max_file_size"],
                    backupCount=self.config["backup_count"]
                )
                error_handler.setLevel(logging.ERROR)
                error_handler.setFormatter(self._get_formatter("file"))
                root.addHandler(error_handler)

        if config:
            root.info(f"Logging reconfigured with: {config}")

    def log_evaluation(self, evaluation: Dict[str, Any]) -> None:
        """
        Log an eligibility evaluation record

        Args:
            evaluation: Dictionary with address, success, score, chains, failures and duration
        """
        eval_logger = logging.getLogger(f"{self.name}.evaluations")

        evaluation_data = {
            "address": evaluation.get("address"),
            "success": bool(evaluation.get("success", False)),
            "score": float(evaluation.get("score", 0.0)),
            "chains": list(evaluation.get("chains", [])),
            "failures": list(evaluation.get("failures", [])),
            "duration": round(float(evaluation.get("duration", 0.0)), 4),
            "timestamp": datetime.now(timezone.utc).isoformat()
        }

        message = (
            f"Evaluation {evaluation_data['address']}: score {evaluation_data['score']:.2f} "
            f"on {len(evaluation_data['chains'])} chains, "
            f"{len(evaluation_data['failures'])} failures"
        )
        level = EVALUATION_LOG if evaluation_data["success"] else logging.ERROR
        eval_logger.log(level, message, extra={"evaluation_data": evaluation_data})

    def log_error(self, error: Exception, context: Dict) -> None:
        """
        Log error with context

        Args:
            error: Exception that occurred
            context: Dictionary containing error context
        """
        error_logger = logging.getLogger(f"{self.name}.errors")

        error_data = {
            "error_type": type(error).__name__,
            "error_message": str(error),
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "context": context,
            "traceback": "".join(
                traceback.format_exception(type(error), error, error.__traceback__)
            )
        }

        where = context.get("function", "unknown")
        if isinstance(error, (ValueError, TypeError, KeyError)):
            error_logger.warning(f"Validation error in {where}: {error}", extra={"error_data": error_data})
        elif isinstance(error, (ConnectionError, TimeoutError)):
            error_logger.error(f"Network error in {where}: {error}", extra={"error_data": error_data})
        else:
            error_logger.error(f"Unexpected error in {where}: {error}", extra={"error_data": error_data})


class JsonFormatter(logging.Formatter):
    """JSON log formatter"""

    def format(self, record):
        log_obj = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno
        }

        if record.exc_info:
            log_obj["exception"] = self.formatException(record.exc_info)

        if hasattr(record, "evaluation_data"):
            log_obj["evaluation"] = record.evaluation_data

        if hasattr(record, "error_data"):
            log_obj["error"] = record.error_data

        return json.dumps(log_obj, default=str)


class ColoredFormatter(logging.Formatter):
    """Colored console formatter"""

    COLORS = {
        'DEBUG': '\033[36m',       # Cyan
        'INFO': '\033[32m',        # Green
        'EVALUATION': '\033[35m',  # Magenta
        'WARNING': '\033[33m',     # Yellow
        'ERROR': '\033[31m',       # Red
        'CRITICAL': '\033[41m'     # Red Background
    }
    RESET = '\033[0m'

    def __init__(self):
        super().__init__(
            '%(asctime)s - %(name)s - %(levelname)s - %(message)s',
            datefmt='%Y-%m-%d %H:%M:%S'
        )

    def format(self, record):
        original = record.levelname
        color = self.COLORS.get(original, '')
        record.levelname = f"{color}{original}{self.RESET}"
        try:
            return super().format(record)
        finally:
            record.levelname = original


class StandardFormatter(logging.Formatter):
    """Standard text formatter"""

    def __init__(self):
        super().__init__(
            '%(asctime)s - %(name)s - %(levelname)s - %(message)s',
            datefmt='%Y-%m-%d %H:%M:%S'
        )

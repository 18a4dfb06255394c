import copy
import logging

from .colors import Colors


class LogFormatter(logging.Formatter):
    """
    Colored console formatter.
    Highlights alert lines and dims the periodic aggregation chatter.
    """

    LEVEL_COLORS = {
        logging.DEBUG: Colors.GREY,
        logging.INFO: Colors.GREEN,
        logging.WARNING: Colors.YELLOW,
        logging.ERROR: Colors.RED,
        logging.CRITICAL: Colors.BOLD + Colors.RED,
    }

    BASE_FORMAT = (
        f"{Colors.GREY}%(asctime)s{Colors.RESET} - "
        f"{Colors.CYAN}%(name)s{Colors.RESET} - %(levelname)s - %(message)s"
    )

    def __init__(self):
        super().__init__(self.BASE_FORMAT, datefmt="%Y-%m-%d %H:%M:%S")

    def format(self, record):
        # Copy so file handlers sharing the record never see ANSI codes
        record = copy.copy(record)

        color = self.LEVEL_COLORS.get(record.levelno, Colors.RESET)
        record.levelname = f"{color}{record.levelname}{Colors.RESET}"

        if isinstance(record.msg, str):
            if record.msg.startswith("ALERT"):
                record.msg = f"{Colors.MAGENTA}{Colors.BOLD}{record.msg}{Colors.RESET}"
            elif record.msg.startswith("Aggregation"):
                record.msg = f"{Colors.GREY}{record.msg}{Colors.RESET}"

        return super().format(record)

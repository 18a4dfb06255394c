"""
ANSI Color codes for console output formatting
"""


class Colors:
    """ANSI color codes and helper methods"""
    RESET = "\033[0m"
    BOLD = "\033[1m"

    RED = "\033[31m"
    GREEN = "\033[32m"
    YELLOW = "\033[33m"
    BLUE = "\033[34m"
    MAGENTA = "\033[35m"
    CYAN = "\033[36m"
    WHITE = "\033[37m"
    GREY = "\033[90m"

    @classmethod
    def colorize(cls, text: str, color: str) -> str:
        """Wrap text in color codes"""
        return f"{color}{text}{cls.RESET}"

    @classmethod
    def get_severity_color(cls, severity: str) -> str:
        """Get color code for an alert severity name"""
        level = severity.lower()
        if level == "critical":
            return cls.RED
        elif level == "warning":
            return cls.YELLOW
        elif level == "info":
            return cls.BLUE
        return cls.WHITE

    @classmethod
    def get_grade_color(cls, grade: str) -> str:
        """Get color code for a report grade (A best, F worst)"""
        if grade in ("A", "B"):
            return cls.GREEN
        elif grade == "C":
            return cls.YELLOW
        elif grade in ("D", "F"):
            return cls.RED
        return cls.WHITE

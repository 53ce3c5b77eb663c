import importlib
import re
import shutil
import subprocess
import sys
import traceback
from datetime import date, datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Dict, Optional, Union

import yaml

from pg_scrub.common.constants import TRACEBACK_LINES_COUNT
from pg_scrub.common.errors import ConfigurationError

Age = Union[timedelta, datetime, date, str]

DURATION_PATTERN = re.compile(
    r"^\s*(?P<amount>\d+)\s*(?P<unit>minute|hour|day|week|month|year)s?\s*$",
    re.IGNORECASE,
)
DURATION_UNITS = {
    "minute": timedelta(minutes=1),
    "hour": timedelta(hours=1),
    "day": timedelta(days=1),
    "week": timedelta(weeks=1),
    "month": timedelta(days=30),
    "year": timedelta(days=365),
}
CAMEL_BOUNDARY = re.compile(r"(?<=[a-z0-9])(?=[A-Z])|(?<=[A-Z])(?=[A-Z][a-z])")


def exception_helper(show_traceback=True):
    exc_type, exc_value, exc_traceback = sys.exc_info()
    return "\n".join(
        [
            v
            for v in traceback.format_exception(
                exc_type, exc_value, exc_traceback if show_traceback else None
            )
        ]
    )


def exception_handler(func):
    def f(*args, **kwargs):
        try:
            func(*args, **kwargs)
        except Exception:
            print(exception_helper(show_traceback=True))
            raise

    return f


def exception_to_str(exc: Exception, limit: int = TRACEBACK_LINES_COUNT) -> str:
    tb_exc = traceback.TracebackException.from_exception(exc)
    lines = list(tb_exc.format())
    return "".join(lines[-limit:])


def pretty_size(bytes_v):
    units = [
        (1 << 50, " PB"),
        (1 << 40, " TB"),
        (1 << 30, " GB"),
        (1 << 20, " MB"),
        (1 << 10, " KB"),
        (1, (" byte", " bytes")),
    ]
    for factor, suffix in units:
        if bytes_v >= factor:
            break
    amount = int(bytes_v / factor)

    if isinstance(suffix, tuple):
        singular, multiple = suffix
        if amount == 1:
            suffix = singular
        else:
            suffix = multiple
    return str(amount) + suffix


def simple_slugify(value: str):
    return re.sub(r'\W+', '-', value).strip('-').lower()


def underscore(value: str) -> str:
    """
    Converts CamelCase class names to snake_case
    :param value: class name, e.g. "AdminUser"
    :return: snake case name, e.g. "admin_user"
    """
    return CAMEL_BOUNDARY.sub("_", value).replace("-", "_").lower()


def pluralize(word: str) -> str:
    if not word:
        return word
    if re.search(r"[^aeiou]y$", word):
        return word[:-1] + "ies"
    if re.search(r"(s|x|z|ch|sh)$", word):
        return word + "es"
    return word + "s"


def singularize(word: str) -> str:
    if word.endswith("ies") and len(word) > 3:
        return word[:-3] + "y"
    if re.search(r"(ss|x|z|ch|sh)es$", word):
        return word[:-2]
    if word.endswith("s") and not word.endswith("ss"):
        return word[:-1]
    return word


def read_yaml(file_path: Union[str, Path]) -> Dict:
    path = Path(file_path)
    if path.suffix not in ('.yml', '.yaml'):
        raise ValueError("File must be .yml or .yaml")

    with open(path.absolute(), "r") as file:
        data = yaml.safe_load(file)

    return data or {}


def parse_age(value: Age) -> Union[timedelta, datetime]:
    """
    Normalizes an age declaration: durations stay durations, dates become datetimes
    :param value: timedelta, date, datetime or a string like "90 days", "1 year", "2024-01-01"
    :return: timedelta or datetime
    """
    if isinstance(value, timedelta):
        return value

    if isinstance(value, datetime):
        return value

    if isinstance(value, date):
        return datetime(value.year, value.month, value.day)

    if isinstance(value, str):
        duration_match = DURATION_PATTERN.match(value)
        if duration_match:
            amount = int(duration_match.group("amount"))
            return DURATION_UNITS[duration_match.group("unit").lower()] * amount

        try:
            return datetime.fromisoformat(value.strip())
        except ValueError:
            raise ConfigurationError(f"Can't parse age or date: {value!r}")

    raise ConfigurationError(
        f"Age must be a timedelta, a date/datetime or a date string, got {type(value).__name__}"
    )


def resolve_cutoff(age: Age, now: Optional[datetime] = None) -> datetime:
    """
    Turns an age declaration into an absolute point in time
    :param age: duration (subtracted from now) or an absolute date
    :param now: reference time, current UTC time by default
    :return: timezone aware cutoff datetime
    """
    parsed = parse_age(age)
    if isinstance(parsed, timedelta):
        now = now or datetime.now(timezone.utc)
        return now - parsed

    # naive dates are treated as UTC
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def format_age(age: Age) -> str:
    parsed = parse_age(age)
    if not isinstance(parsed, timedelta):
        return parsed.isoformat()

    days = parsed.days
    if days >= 365:
        return f"{days // 365} year(s)"
    if days >= 30:
        return f"{days // 30} month(s)"
    return f"{days} day(s)"


def import_object(path: str) -> Any:
    """
    Imports an object by "package.module:attribute" path
    """
    module_name, _, attribute = path.partition(":")
    if not module_name or not attribute:
        raise ConfigurationError(f"Expected 'module:attribute', got {path!r}")

    module = importlib.import_module(module_name)
    try:
        return getattr(module, attribute)
    except AttributeError:
        raise ConfigurationError(f"Module {module_name} has no attribute {attribute}")


def check_pg_util(util_name: str, output_util_res: str) -> bool:
    from pg_scrub.logger import get_logger

    logger = get_logger()
    util_path = shutil.which(util_name)
    if util_path is None:
        logger.error("ERROR: program %s is not exists!" % util_name)
        return False

    command = [util_path, "--version"]
    res = subprocess.run(
        command, stdout=subprocess.PIPE, stderr=subprocess.PIPE, universal_newlines=True
    )
    if str(res.stdout).find(output_util_res) == -1:
        logger.error("ERROR: program %s is not %s!" % (util_name, output_util_res))
        return False

    return True

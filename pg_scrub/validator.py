from dataclasses import dataclass, field
from typing import Iterable, List, Optional

from pg_scrub.common.config import ValidatorConfig
from pg_scrub.common.errors import LeakDetectedError
from pg_scrub.conditions import IsNull, Like
from pg_scrub.logger import get_logger
from pg_scrub.schema import Database

logger = get_logger()


@dataclass
class Check:
    name: str
    count: int
    passed: bool


@dataclass
class ValidationResult:
    errors: List[str] = field(default_factory=list)
    checks: List[Check] = field(default_factory=list)

    @property
    def passed(self) -> bool:
        return not self.errors


class Validator:
    """
    Looks for PII left in a scrubbed database: addresses at real mail domains,
    tokens and external identifiers that should have been cleared
    """

    def __init__(self, db: Database, config: Optional[ValidatorConfig] = None, email_domains: Optional[Iterable[str]] = None):
        self.db = db
        self.config = config or ValidatorConfig()
        self.email_domains = list(email_domains if email_domains is not None else self.config.sensitive_email_domains)

    async def _check_real_emails(self, result: ValidationResult):
        found = 0
        for domain in self.email_domains:
            count = await self.db.count(self.config.email_table, Like(self.config.email_column, f"%@{domain}"))
            if count > 0:
                found += 1
                result.errors.append(f"Found {count} emails with real domain {domain}")
        result.checks.append(Check(name="real_email_domains", count=found, passed=found == 0))

    async def _check_test_emails(self, result: ValidationResult):
        count = await self.db.count(
            self.config.email_table,
            Like(self.config.email_column, f"%@{self.config.test_email_domain}"),
        )
        result.checks.append(Check(name="test_emails", count=count, passed=count > 0))

    async def _check_cleared(self, result: ValidationResult, columns: List[str], label: str):
        catalog = await self.db.catalog()
        table = self.config.token_table
        for column in columns:
            if not catalog.has_column(table, column):
                continue

            count = await self.db.count(table, IsNull(column, negate=True))
            if count > 0:
                result.errors.append(f"Found {count} {table} with {column}{label}")
            result.checks.append(Check(name=column, count=count, passed=count == 0))

    async def run(self) -> ValidationResult:
        result = ValidationResult()
        catalog = await self.db.catalog()

        if catalog.has_column(self.config.email_table, self.config.email_column):
            await self._check_real_emails(result)
            await self._check_test_emails(result)
        else:
            logger.info(
                f"Skip email checks: {self.config.email_table}.{self.config.email_column} does not exist"
            )

        await self._check_cleared(result, self.config.token_columns, "")
        await self._check_cleared(result, self.config.external_id_columns, " (should be cleared)")

        for check in result.checks:
            logger.info(f"  {'passed' if check.passed else 'FAILED'}: {check.name} ({check.count})")

        return result

    async def validate(self) -> ValidationResult:
        """
        Same as run() but raises LeakDetectedError when anything is found
        """
        result = await self.run()
        if not result.passed:
            raise LeakDetectedError(result.errors)
        return result

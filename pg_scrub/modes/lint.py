from typing import Dict, List

from pg_scrub.common.errors import LintError
from pg_scrub.context import Context


class LintMode:
    """
    Checks every registered sanitizer against the live schema
    """

    def __init__(self, context: Context):
        self.context = context

    async def run(self) -> Dict[str, List[str]]:
        self.context.logger.info("-------------> Started lint mode")

        db = await self.context.connect()
        try:
            catalog = await db.catalog()
        finally:
            await db.close()

        issues = self.context.registry.lint(catalog, self.context.config.allow_keep_undefined_columns)
        for name, sanitizer_issues in issues.items():
            self.context.logger.error(f"{name}:")
            for issue in sanitizer_issues:
                self.context.logger.error(f"  - {issue}")

        if issues:
            raise LintError(issues)

        self.context.logger.info(f"All {len(self.context.registry)} sanitizer(s) pass lint checks")
        self.context.logger.info("<------------- Finished lint mode")
        return issues

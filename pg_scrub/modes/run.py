import json

from pg_scrub.common.dto import RunSummary
from pg_scrub.context import Context
from pg_scrub.runner import Runner


class RunMode:
    """
    Sanitizes the database in place, all sanitizers or the ones named on the command line
    """

    def __init__(self, context: Context):
        self.context = context

    async def run(self) -> RunSummary:
        if not self.context.config.dry_run:
            self.context.logger.warning("LIVE run: the database will be modified in place")

        db = await self.context.connect()
        try:
            runner = Runner(db, self.context.registry, self.context.config)
            summary = await runner.run(self.context.options.names)
        finally:
            await db.close()

        if self.context.options.json:
            print(json.dumps(summary.to_dict(), ensure_ascii=False))
        return summary

from pg_scrub.context import Context
from pg_scrub.safe_scrub import SafeScrubber, SafeScrubResult


class SafeScrubMode:
    def __init__(self, context: Context):
        self.context = context

    async def run(self) -> SafeScrubResult:
        scrubber = SafeScrubber(
            self.context.registry,
            self.context.config,
            confirm=self.context.options.confirm,
        )
        return await scrubber.run()

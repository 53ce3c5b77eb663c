from pg_scrub.context import Context
from pg_scrub.dump import DumpGenerator, DumpResult


class DumpMode:
    def __init__(self, context: Context):
        self.context = context

    async def run(self) -> DumpResult:
        generator = DumpGenerator(
            self.context.registry,
            self.context.config,
            source_url=self.context.database_url,
            output_dir=self.context.options.run_dir,
        )
        result = await generator.generate(output_file=self.context.options.output_file)
        print(f"Scrubbed dump: {result.path} ({result.size})")
        return result

from typing import Dict

from pg_scrub.analyzer import (
    Analyzer,
    PruningAnalyzer,
    render_pruning_analysis,
    render_row_counts,
    render_table_sizes,
)
from pg_scrub.context import Context


class AnalyzeMode:
    """
    Advisory report: largest tables, sensitive table row counts and pruning candidates
    """

    def __init__(self, context: Context):
        self.context = context

    def _pruning_analyzer(self, db) -> PruningAnalyzer:
        pruning = self.context.config.pruning
        if pruning is not None:
            return PruningAnalyzer.from_pruning(db, pruning)
        return PruningAnalyzer(db)

    async def run(self) -> Dict:
        self.context.logger.info("-------------> Started analyze mode")

        db = await self.context.connect()
        try:
            analyzer = Analyzer(db, self.context.config, limit=self.context.options.limit)
            sizes = await analyzer.table_sizes()
            counts = await analyzer.row_counts()
            analysis = await self._pruning_analyzer(db).analyze()
        finally:
            await db.close()

        print("Largest tables")
        print(render_table_sizes(sizes))
        if counts:
            print("Sensitive tables")
            print(render_row_counts(counts))
        print("Pruning candidates")
        print(render_pruning_analysis(analysis))

        self.context.logger.info("<------------- Finished analyze mode")
        return {
            'table_sizes': sizes,
            'row_counts': counts,
            'pruning': analysis,
        }

import json
from typing import Dict, List

from prettytable import PrettyTable, SINGLE_BORDER

from pg_scrub.context import Context


class ListMode:
    context: Context
    table: PrettyTable = None
    json: str = None

    def __init__(self, context: Context):
        self.context = context

    def _describe(self) -> List[Dict]:
        result = []
        for sanitizer in self.context.registry.all():
            if sanitizer.bulk_operation is not None:
                operation = sanitizer.bulk_operation.type.value
            elif sanitizer.prune_operation is not None:
                operation = "prune + scrub"
            else:
                operation = "scrub"

            result.append({
                'name': sanitizer.friendly_name,
                'sanitizer': sanitizer.sanitizer_name(),
                'table': sanitizer.table_name,
                'operation': operation,
                'scrub': sanitizer.scrubbed_columns(),
                'keep': sanitizer.kept_columns(),
            })
        return result

    def _prepare_table(self, sanitizers: List[Dict]):
        self.table = PrettyTable([
            'name',
            'sanitizer',
            'table',
            'operation',
            'scrub',
            'keep',
        ], align='l')
        self.table.set_style(SINGLE_BORDER)

        for sanitizer in sanitizers:
            self.table.add_row([
                sanitizer['name'],
                sanitizer['sanitizer'],
                sanitizer['table'],
                sanitizer['operation'],
                ', '.join(sanitizer['scrub']),
                ', '.join(sanitizer['keep']),
            ])

    async def run(self) -> List[Dict]:
        self.context.logger.info("-------------> Started list mode")

        sanitizers = self._describe()
        if self.context.options.json:
            self.json = json.dumps(sanitizers, ensure_ascii=False)
            print(self.json)
        else:
            self._prepare_table(sanitizers)
            print(self.table)
            print(f"Total: {len(sanitizers)} sanitizer(s)")

        self.context.logger.info("<------------- Finished list mode")
        return sanitizers

from django.core.management.base import BaseCommand, CommandError

from todos.graph import detect_circular_dependencies
from todos.services import load_dependency_graph


class Command(BaseCommand):
    help = 'Verify that the stored task dependency graph has no cycles.'

    def handle(self, *args, **options):
        graph = load_dependency_graph()
        cycles = detect_circular_dependencies(graph)
        if not cycles:
            edge_count = sum(len(deps) for deps in graph.values())
            self.stdout.write(self.style.SUCCESS(
                f'No cycles in {len(graph)} task(s) and {edge_count} dependency edge(s).'
            ))
            return

        for cycle in cycles:
            self.stderr.write(' -> '.join(str(tid) for tid in cycle))
        raise CommandError(f'{len(cycles)} dependency cycle(s) found')

import random
from datetime import datetime, timedelta, timezone as dt_timezone
from unittest.mock import MagicMock, patch

import requests
from django.core.management import call_command
from django.core.management.base import CommandError
from django.db import DatabaseError
from django.test import SimpleTestCase, TestCase, override_settings
from rest_framework.test import APITestCase

from .exceptions import CircularDependencyError, TaskNotFound, UnknownDependency
from .graph import detect_circular_dependencies, would_create_cycle
from .images import search_image
from .models import Task, TaskDependency
from .scheduling import (
    analyze_tasks,
    build_dependents_map,
    calculate_earliest_start_dates,
    find_critical_path,
)
from . import services

NOW = datetime(2025, 1, 1, 9, 0, tzinfo=dt_timezone.utc)
DAY = timedelta(days=1)


def _task(tid, *deps, title=None):
    return {"id": tid, "title": title or f"T{tid}", "dependencies": list(deps)}


class CycleCheckTests(SimpleTestCase):
    def test_empty_proposal_is_accepted(self):
        self.assertFalse(would_create_cycle(1, [], {1: [2], 2: []}))

    def test_self_dependency_is_rejected(self):
        self.assertTrue(would_create_cycle(1, [1], {}))
        self.assertTrue(would_create_cycle(1, [2, 1], {1: [], 2: []}))

    def test_reverse_edge_is_rejected(self):
        # 1 depends on 2; 2 depending on 1 closes the loop
        self.assertTrue(would_create_cycle(2, [1], {1: [2], 2: []}))

    def test_transitive_cycle_is_rejected(self):
        graph = {1: [], 2: [1], 3: [2]}
        self.assertTrue(would_create_cycle(1, [3], graph))

    def test_missing_node_is_a_dead_end(self):
        self.assertFalse(would_create_cycle(1, [99], {1: []}))

    def test_shared_prerequisites_are_not_a_cycle(self):
        graph = {1: [], 2: [1], 3: [1], 4: []}
        self.assertFalse(would_create_cycle(4, [2, 3], graph))

    def test_current_edges_of_the_task_are_ignored(self):
        # the stored self-loop on 1 is about to be replaced
        self.assertFalse(would_create_cycle(1, [2], {1: [1], 2: []}))

    def test_deep_chain_does_not_exhaust_the_stack(self):
        graph = {i: [i - 1] for i in range(2, 5001)}
        graph[1] = []
        self.assertTrue(would_create_cycle(1, [5000], graph))
        self.assertFalse(would_create_cycle(5001, [5000], graph))


class DetectCyclesTests(SimpleTestCase):
    def test_acyclic_graph(self):
        self.assertEqual(detect_circular_dependencies({1: [], 2: [1], 3: [1, 2]}), [])

    def test_self_dependency(self):
        self.assertEqual(detect_circular_dependencies({4: [4]}), [[4, 4]])

    def test_three_node_cycle(self):
        self.assertEqual(detect_circular_dependencies({1: [2], 2: [3], 3: [1]}), [[1, 2, 3, 1]])

    def test_cycle_is_rotated_to_smallest_id(self):
        self.assertEqual(detect_circular_dependencies({5: [3], 3: [5]}), [[3, 5, 3]])


class SchedulingTests(SimpleTestCase):
    def test_task_without_dependencies_starts_now(self):
        self.assertEqual(calculate_earliest_start_dates([_task(1)], NOW), {1: NOW})

    def test_chain_starts_after_each_prerequisite_finishes(self):
        tasks = [_task(3, 2), _task(1), _task(2, 1), _task(4, 3)]
        starts = calculate_earliest_start_dates(tasks, NOW)

        self.assertEqual(starts, {1: NOW, 2: NOW + DAY, 3: NOW + 2 * DAY, 4: NOW + 3 * DAY})
        for t in tasks:
            for dep in t["dependencies"]:
                self.assertGreaterEqual(starts[t["id"]], starts[dep] + DAY)

    def test_start_follows_latest_prerequisite(self):
        tasks = [_task(1), _task(2, 1), _task(3, 2), _task(4, 1, 3)]
        starts = calculate_earliest_start_dates(tasks, NOW)
        self.assertEqual(starts[4], NOW + 3 * DAY)

    def test_missing_prerequisite_is_skipped(self):
        starts = calculate_earliest_start_dates([_task(1, 99), _task(2, 1, 98)], NOW)
        self.assertEqual(starts, {1: NOW, 2: NOW + DAY})

    def test_resolved_dependency_records_are_accepted(self):
        tasks = [_task(1), {"id": 2, "dependencies": [{"id": 1, "title": "T1"}]}]
        self.assertEqual(calculate_earliest_start_dates(tasks, NOW)[2], NOW + DAY)

    def test_critical_path_of_a_chain(self):
        tasks = [_task(1), _task(2, 1), _task(3, 2), _task(4)]
        self.assertEqual(find_critical_path(tasks, now=NOW), [1, 2, 3])

        records = {r["id"]: r for r in analyze_tasks(tasks, NOW)}
        self.assertTrue(all(records[tid]["critical_path"] for tid in (1, 2, 3)))
        self.assertFalse(records[4]["critical_path"])

    def test_terminal_tie_prefers_lowest_id(self):
        self.assertEqual(find_critical_path([_task(5), _task(2), _task(7)], now=NOW), [2])

    def test_backtrack_tie_prefers_lowest_id(self):
        tasks = [_task(3, 2, 1), _task(2), _task(1)]
        self.assertEqual(find_critical_path(tasks, now=NOW), [1, 3])

    def test_dependents_are_the_inverse_relation(self):
        tasks = [_task(1), _task(2, 1), _task(3, 1, 2), _task(4, 3)]
        dependents = build_dependents_map(tasks)

        self.assertEqual(dependents, {1: [2, 3], 2: [3], 3: [4], 4: []})
        for t in tasks:
            for dep in t["dependencies"]:
                self.assertIn(t["id"], dependents[dep])

    def test_analysis_record_shape(self):
        record = analyze_tasks([_task(1, title="Write report"), _task(2, 1)], NOW)[0]
        self.assertEqual(record, {
            "id": 1,
            "title": "Write report",
            "earliest_start_date": NOW,
            "duration": 1,
            "critical_path": True,
            "dependencies": [],
            "dependents": [2],
        })

    def test_empty_task_set(self):
        self.assertEqual(analyze_tasks([], NOW), [])
        self.assertEqual(find_critical_path([], now=NOW), [])

    def test_long_chain_does_not_exhaust_the_stack(self):
        tasks = [_task(1)] + [_task(i, i - 1) for i in range(2, 3001)]
        starts = calculate_earliest_start_dates(tasks, NOW)
        self.assertEqual(starts[3000], NOW + 2999 * DAY)


class ServiceTests(TestCase):
    def setUp(self):
        patcher = patch('todos.services.search_image', return_value=None)
        self.search_image = patcher.start()
        self.addCleanup(patcher.stop)
        self.a = Task.objects.create(title='A')
        self.b = Task.objects.create(title='B')
        self.c = Task.objects.create(title='C')

    def _deps(self, task):
        return sorted(TaskDependency.objects.filter(task=task).values_list('depends_on_id', flat=True))

    def test_set_dependencies_returns_resolved_task(self):
        task = services.set_dependencies(self.c.pk, [self.a.pk, self.b.pk, self.a.pk])
        self.assertEqual(sorted(d.pk for d in task.dependencies.all()), sorted([self.a.pk, self.b.pk]))
        self.assertEqual(self._deps(self.c), sorted([self.a.pk, self.b.pk]))

    def test_reverse_edge_rejected_and_storage_untouched(self):
        services.set_dependencies(self.a.pk, [self.b.pk])
        with self.assertRaises(CircularDependencyError):
            services.set_dependencies(self.b.pk, [self.a.pk])
        self.assertEqual(self._deps(self.a), [self.b.pk])
        self.assertEqual(self._deps(self.b), [])

    def test_self_dependency_rejected(self):
        with self.assertRaises(CircularDependencyError):
            services.set_dependencies(self.a.pk, [self.a.pk])
        self.assertEqual(self._deps(self.a), [])

    def test_empty_dependency_set_clears_edges(self):
        services.set_dependencies(self.c.pk, [self.a.pk, self.b.pk])
        services.set_dependencies(self.c.pk, [])
        self.assertEqual(self._deps(self.c), [])
        services.set_dependencies(self.c.pk, [])
        self.assertEqual(self._deps(self.c), [])

    def test_unknown_dependency_rejected(self):
        services.set_dependencies(self.c.pk, [self.a.pk])
        with self.assertRaises(UnknownDependency):
            services.set_dependencies(self.c.pk, [self.b.pk, 9999])
        self.assertEqual(self._deps(self.c), [self.a.pk])

    def test_missing_task(self):
        with self.assertRaises(TaskNotFound):
            services.set_dependencies(9999, [self.a.pk])
        with self.assertRaises(TaskNotFound):
            services.delete_task(9999)

    def test_failed_insert_keeps_previous_edges(self):
        services.set_dependencies(self.c.pk, [self.a.pk])
        with patch.object(TaskDependency.objects, 'bulk_create', side_effect=DatabaseError('disk full')):
            with self.assertRaises(DatabaseError):
                services.set_dependencies(self.c.pk, [self.b.pk])
        self.assertEqual(self._deps(self.c), [self.a.pk])

    def test_cycle_check_reads_a_locked_snapshot(self):
        with patch('todos.services.load_dependency_graph', wraps=services.load_dependency_graph) as loader:
            services.set_dependencies(self.c.pk, [self.a.pk])
        loader.assert_called_once_with(lock=True)

        graph = services.load_dependency_graph(lock=True)
        self.assertEqual(graph[self.c.pk], [self.a.pk])
        self.assertEqual(graph[self.a.pk], [])

    def test_accepted_mutations_keep_graph_acyclic(self):
        ids = [self.a.pk, self.b.pk, self.c.pk] + [Task.objects.create(title=f'T{i}').pk for i in range(4)]
        rng = random.Random(7)
        accepted = 0
        for _ in range(60):
            task_id = rng.choice(ids)
            proposal = rng.sample(ids, rng.randint(0, 3))
            try:
                services.set_dependencies(task_id, proposal)
                accepted += 1
            except CircularDependencyError:
                pass
            self.assertEqual(detect_circular_dependencies(services.load_dependency_graph()), [])
        self.assertGreater(accepted, 0)

    def test_delete_removes_edges_in_both_directions(self):
        services.set_dependencies(self.b.pk, [self.a.pk])
        services.set_dependencies(self.c.pk, [self.b.pk])
        services.delete_task(self.b.pk)

        self.assertFalse(Task.objects.filter(pk=self.b.pk).exists())
        self.assertFalse(TaskDependency.objects.exists())

    def test_create_task_with_image_and_dependencies(self):
        self.search_image.return_value = 'https://images.example/cat.jpg'
        task = services.create_task('Buy cat food', dependency_ids=[self.a.pk])

        self.search_image.assert_called_once_with('Buy cat food')
        self.assertEqual(task.image_url, 'https://images.example/cat.jpg')
        self.assertEqual([d.pk for d in task.dependencies.all()], [self.a.pk])

    def test_create_task_rolls_back_on_bad_dependency(self):
        before = Task.objects.count()
        with self.assertRaises(UnknownDependency):
            services.create_task('Orphan', dependency_ids=[9999])
        self.assertEqual(Task.objects.count(), before)

    def test_analyze_all(self):
        services.set_dependencies(self.b.pk, [self.a.pk])
        services.set_dependencies(self.c.pk, [self.b.pk])
        d = Task.objects.create(title='D')

        tasks, analysis, critical_path = services.analyze_all(now=NOW)
        records = {r["id"]: r for r in analysis}

        self.assertEqual(len(tasks), 4)
        self.assertEqual(critical_path, [self.a.pk, self.b.pk, self.c.pk])
        self.assertEqual(records[self.c.pk]["earliest_start_date"], NOW + 2 * DAY)
        self.assertEqual(records[self.a.pk]["dependents"], [self.b.pk])
        self.assertFalse(records[d.pk]["critical_path"])

    def test_check_dependencies_command(self):
        services.set_dependencies(self.b.pk, [self.a.pk])
        call_command('check_dependencies')

        # bypass the service to store a cycle
        TaskDependency.objects.create(task=self.a, depends_on=self.b)
        with self.assertRaises(CommandError):
            call_command('check_dependencies')


class TodoApiTests(APITestCase):
    def setUp(self):
        patcher = patch('todos.services.search_image', return_value=None)
        patcher.start()
        self.addCleanup(patcher.stop)

    def _url(self, task_id):
        return f'/api/todos/{task_id}/'

    def test_create_and_list(self):
        resp = self.client.post('/api/todos/', {"title": "  Plan trip  ", "due_date": "2025-03-04"})
        self.assertEqual(resp.status_code, 201)
        self.assertEqual(resp.data["title"], "Plan trip")
        self.assertTrue(resp.data["due_date"].startswith("2025-03-04T12:00:00"))
        self.assertEqual(resp.data["dependencies"], [])

        listed = self.client.get('/api/todos/')
        self.assertEqual(listed.status_code, 200)
        self.assertEqual([t["title"] for t in listed.data], ["Plan trip"])

    def test_missing_due_date_is_null(self):
        resp = self.client.post('/api/todos/', {"title": "No rush"})
        self.assertEqual(resp.status_code, 201)
        self.assertIsNone(resp.data["due_date"])

    def test_empty_due_date_is_null(self):
        resp = self.client.post('/api/todos/', {"title": "Someday", "due_date": ""})
        self.assertEqual(resp.status_code, 201)
        self.assertIsNone(resp.data["due_date"])

    def test_blank_title_rejected(self):
        resp = self.client.post('/api/todos/', {"title": "   "})
        self.assertEqual(resp.status_code, 400)
        self.assertEqual(resp.data["error"], "Title is required")
        self.assertEqual(resp.data["code"], "invalid")
        self.assertEqual(Task.objects.count(), 0)

    def test_patch_replaces_dependencies(self):
        a = Task.objects.create(title='A')
        b = Task.objects.create(title='B')
        resp = self.client.patch(self._url(b.pk), {"dependency_ids": [a.pk]})

        self.assertEqual(resp.status_code, 200)
        self.assertEqual([d["id"] for d in resp.data["dependencies"]], [a.pk])
        self.assertEqual(resp.data["dependencies"][0]["title"], "A")

    def test_patch_cycle_rejected(self):
        a = Task.objects.create(title='A')
        b = Task.objects.create(title='B')
        TaskDependency.objects.create(task=a, depends_on=b)

        resp = self.client.patch(self._url(b.pk), {"dependency_ids": [a.pk]})
        self.assertEqual(resp.status_code, 400)
        self.assertEqual(resp.data, {"error": "Circular dependency detected", "code": "circular_dependency"})
        self.assertEqual(list(TaskDependency.objects.values_list('task_id', 'depends_on_id')), [(a.pk, b.pk)])

    def test_patch_requires_dependency_ids(self):
        a = Task.objects.create(title='A')
        resp = self.client.patch(self._url(a.pk), {})
        self.assertEqual(resp.status_code, 400)
        self.assertIn("dependency_ids", resp.data["details"])

    def test_malformed_id(self):
        resp = self.client.patch(self._url('abc'), {"dependency_ids": []})
        self.assertEqual(resp.status_code, 400)
        self.assertEqual(resp.data, {"error": "Invalid ID", "code": "invalid_id"})

    def test_unknown_task(self):
        resp = self.client.delete(self._url(424242))
        self.assertEqual(resp.status_code, 404)
        self.assertEqual(resp.data["code"], "not_found")

    def test_delete(self):
        a = Task.objects.create(title='A')
        resp = self.client.delete(self._url(a.pk))
        self.assertEqual(resp.status_code, 200)
        self.assertEqual(resp.data, {"message": "Todo deleted"})
        self.assertEqual(self.client.get(self._url(a.pk)).status_code, 404)

    def test_analysis_of_empty_store(self):
        resp = self.client.get('/api/todos/analysis/')
        self.assertEqual(resp.status_code, 200)
        self.assertEqual(resp.data, {"todos": [], "analysis": [], "critical_path": []})

    def test_analysis(self):
        a = Task.objects.create(title='A')
        b = Task.objects.create(title='B')
        c = Task.objects.create(title='C')
        d = Task.objects.create(title='D')
        TaskDependency.objects.create(task=b, depends_on=a)
        TaskDependency.objects.create(task=c, depends_on=b)

        resp = self.client.get('/api/todos/analysis/')
        self.assertEqual(resp.status_code, 200)
        records = {r["id"]: r for r in resp.data["analysis"]}

        self.assertEqual(resp.data["critical_path"], [a.pk, b.pk, c.pk])
        self.assertEqual(len(resp.data["todos"]), 4)
        self.assertTrue(records[c.pk]["critical_path"])
        self.assertFalse(records[d.pk]["critical_path"])
        self.assertEqual(records[b.pk]["dependencies"], [a.pk])
        self.assertEqual(records[b.pk]["dependents"], [c.pk])
        self.assertEqual(records[a.pk]["duration"], 1)
        self.assertIsInstance(records[a.pk]["earliest_start_date"], str)

    def test_storage_failure_is_reported(self):
        with patch('todos.services.list_tasks', side_effect=DatabaseError('gone')):
            resp = self.client.get('/api/todos/')
        self.assertEqual(resp.status_code, 500)
        self.assertEqual(resp.data, {"error": "Storage failure", "code": "storage_error"})


class ImageLookupTests(SimpleTestCase):
    def _session(self, ok=True, payload=None, status_code=200):
        response = MagicMock(ok=ok, status_code=status_code, reason='Server Error')
        response.json.return_value = payload if payload is not None else {}
        session = MagicMock()
        session.get.return_value = response
        return session

    @override_settings(PEXELS_API_KEY='')
    def test_no_api_key(self):
        session = self._session()
        self.assertIsNone(search_image('cats', session=session))
        session.get.assert_not_called()

    @override_settings(PEXELS_API_KEY='secret')
    def test_first_photo_is_returned(self):
        session = self._session(payload={"photos": [{"src": {"medium": "https://img/m.jpg", "large": "x"}}]})
        self.assertEqual(search_image('cats', session=session), 'https://img/m.jpg')

        _, kwargs = session.get.call_args
        self.assertEqual(kwargs["params"], {"query": "cats", "per_page": 1})
        self.assertEqual(kwargs["headers"], {"Authorization": "secret"})

    @override_settings(PEXELS_API_KEY='secret')
    def test_no_results(self):
        self.assertIsNone(search_image('cats', session=self._session(payload={"photos": []})))

    @override_settings(PEXELS_API_KEY='secret')
    def test_error_status(self):
        self.assertIsNone(search_image('cats', session=self._session(ok=False, status_code=503)))

    @override_settings(PEXELS_API_KEY='secret')
    def test_transport_error(self):
        session = MagicMock()
        session.get.side_effect = requests.ConnectionError('down')
        self.assertIsNone(search_image('cats', session=session))

    @override_settings(PEXELS_API_KEY='secret')
    def test_non_object_body(self):
        self.assertIsNone(search_image('cats', session=self._session(payload=[])))

    @override_settings(PEXELS_API_KEY='secret')
    def test_malformed_photo_entry(self):
        self.assertIsNone(search_image('cats', session=self._session(payload={"photos": ["oops"]})))
        self.assertIsNone(search_image('cats', session=self._session(payload={"photos": [{"alt": "no src"}]})))

    @override_settings(PEXELS_API_KEY='secret')
    def test_own_session_is_closed(self):
        built = self._session(payload={"photos": [{"src": {"medium": "https://img/m.jpg"}}]})
        built.__enter__.return_value = built
        with patch('todos.images._build_session', return_value=built):
            self.assertEqual(search_image('cats'), 'https://img/m.jpg')
        built.__exit__.assert_called_once()


class ImageFailureApiTests(APITestCase):
    @override_settings(PEXELS_API_KEY='secret')
    def test_bad_image_response_does_not_block_creation(self):
        response = MagicMock(ok=True, status_code=200)
        response.json.return_value = []
        built = MagicMock()
        built.__enter__.return_value = built
        built.get.return_value = response

        with patch('todos.images._build_session', return_value=built):
            resp = self.client.post('/api/todos/', {"title": "Feed cat"})

        self.assertEqual(resp.status_code, 201)
        self.assertIsNone(resp.data["image_url"])

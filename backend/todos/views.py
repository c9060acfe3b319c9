# views.py
from rest_framework import status
from rest_framework.response import Response
from rest_framework.views import APIView

from . import services
from .exceptions import InvalidTaskId
from .serializers import (
    DependencyUpdateSerializer,
    TaskAnalysisSerializer,
    TaskCreateSerializer,
    TaskSerializer,
)


def parse_task_id(raw) -> int:
    """Turn a path segment into a task id; anything but a positive integer is a validation error."""
    try:
        task_id = int(raw)
    except (TypeError, ValueError):
        raise InvalidTaskId()
    if task_id < 1:
        raise InvalidTaskId()
    return task_id


class TodoList(APIView):
    """
    GET  /api/todos/  every todo, newest first, with dependencies resolved.
    POST /api/todos/  create a todo from title, optional due_date and dependency_ids.
    """

    def get(self, request):
        return Response(TaskSerializer(services.list_tasks(), many=True).data, status=status.HTTP_200_OK)

    def post(self, request):
        serializer = TaskCreateSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data

        task = services.create_task(
            data['title'],
            due_date=data.get('due_date'),
            dependency_ids=data.get('dependency_ids') or [],
        )
        return Response(TaskSerializer(task).data, status=status.HTTP_201_CREATED)


class TodoDetail(APIView):
    """
    GET    /api/todos/<id>/  one todo.
    PATCH  /api/todos/<id>/  replace its dependencies; rejected if that closes a cycle.
    DELETE /api/todos/<id>/  remove it and every edge touching it.
    """

    def get(self, request, task_id):
        task = services.get_task(parse_task_id(task_id))
        return Response(TaskSerializer(task).data, status=status.HTTP_200_OK)

    def patch(self, request, task_id):
        pk = parse_task_id(task_id)
        serializer = DependencyUpdateSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        task = services.set_dependencies(pk, serializer.validated_data['dependency_ids'])
        return Response(TaskSerializer(task).data, status=status.HTTP_200_OK)

    def delete(self, request, task_id):
        services.delete_task(parse_task_id(task_id))
        return Response({"message": "Todo deleted"}, status=status.HTTP_200_OK)


class TodoAnalysis(APIView):
    """
    GET /api/todos/analysis/
    Recomputes earliest start dates and the critical path over all todos.
    """

    def get(self, request):
        tasks, analysis, critical_path = services.analyze_all()
        return Response({
            "todos": TaskSerializer(tasks, many=True).data,
            "analysis": TaskAnalysisSerializer(analysis, many=True).data,
            "critical_path": critical_path,
        }, status=status.HTTP_200_OK)

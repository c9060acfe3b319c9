from datetime import date, datetime, time

from django.utils import timezone
from rest_framework import serializers

from .models import Task


class DueDateField(serializers.DateTimeField):
    """Accepts a full ISO timestamp or a bare YYYY-MM-DD date.

    A bare date is stored at noon local time so it stays on the same calendar
    day whatever the client's timezone.
    """

    def to_internal_value(self, value):
        if value == "":
            return None
        if isinstance(value, str) and len(value) == 10:
            try:
                day = date.fromisoformat(value)
            except ValueError:
                self.fail('invalid', format='YYYY-MM-DD')
            value = datetime.combine(day, time(12, 0))
            if timezone.is_naive(value):
                value = timezone.make_aware(value)
        return super().to_internal_value(value)


class DependencySerializer(serializers.ModelSerializer):
    class Meta:
        model = Task
        fields = ['id', 'title', 'due_date', 'image_url', 'created_at']


class TaskSerializer(serializers.ModelSerializer):
    dependencies = DependencySerializer(many=True, read_only=True)

    class Meta:
        model = Task
        fields = ['id', 'title', 'due_date', 'image_url', 'created_at', 'dependencies']


class TaskCreateSerializer(serializers.Serializer):
    title = serializers.CharField(
        max_length=255,
        error_messages={"required": "Title is required", "blank": "Title is required"},
    )
    due_date = DueDateField(required=False, allow_null=True)
    dependency_ids = serializers.ListField(child=serializers.IntegerField(min_value=1), required=False)


class DependencyUpdateSerializer(serializers.Serializer):
    dependency_ids = serializers.ListField(child=serializers.IntegerField(min_value=1), allow_empty=True)


class TaskAnalysisSerializer(serializers.Serializer):
    id = serializers.IntegerField()
    title = serializers.CharField()
    earliest_start_date = serializers.DateTimeField(allow_null=True)
    duration = serializers.IntegerField()
    critical_path = serializers.BooleanField()
    dependencies = serializers.ListField(child=serializers.IntegerField())
    dependents = serializers.ListField(child=serializers.IntegerField())

from django.db import models


class Task(models.Model):
    title = models.CharField(max_length=255)
    due_date = models.DateTimeField(null=True, blank=True)
    image_url = models.URLField(max_length=500, null=True, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)
    # prerequisites: tasks that must finish before this one can start
    dependencies = models.ManyToManyField(
        'self',
        through='TaskDependency',
        through_fields=('task', 'depends_on'),
        symmetrical=False,
        related_name='dependents',
        blank=True,
    )

    class Meta:
        ordering = ['-created_at', '-id']

    def __str__(self):
        return self.title


class TaskDependency(models.Model):
    """Edge (task, depends_on): `task` cannot start before `depends_on` finishes."""

    task = models.ForeignKey(
        Task,
        on_delete=models.CASCADE,
        related_name='dependency_links'
    )
    depends_on = models.ForeignKey(
        Task,
        on_delete=models.CASCADE,
        related_name='dependent_links'
    )

    class Meta:
        unique_together = ('task', 'depends_on')

    def __str__(self):
        return f"{self.task_id} depends on {self.depends_on_id}"

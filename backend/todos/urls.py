from django.urls import path

from .views import TodoAnalysis, TodoDetail, TodoList

urlpatterns = [
    path('', TodoList.as_view(), name='todo-list'),
    path('analysis/', TodoAnalysis.as_view(), name='todo-analysis'),
    path('<str:task_id>/', TodoDetail.as_view(), name='todo-detail'),
]

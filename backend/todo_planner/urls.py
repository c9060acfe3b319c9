from django.urls import include, path

urlpatterns = [
    path('api/todos/', include('todos.urls')),
]

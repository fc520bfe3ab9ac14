from crmhub.tasks.models import Task, TaskAssignment, TaskBoard, TaskComment, TaskDependency, TaskList, TaskTimeEntry

__all__ = [
    "TaskBoard",
    "TaskList",
    "Task",
    "TaskAssignment",
    "TaskDependency",
    "TaskComment",
    "TaskTimeEntry",
]

from tortoise import fields, models


class Project(models.Model):
    id = fields.IntField(pk=True)
    name = fields.CharField(max_length=100)

    owner = fields.ForeignKeyField(
        "models.User",
        related_name="owned_projects",
        on_delete=fields.SET_NULL,
        null=True
    )
    team = fields.ForeignKeyField(
        "models.Team",
        related_name="projects",
        on_delete=fields.SET_NULL,
        null=True
    )
    members = fields.ManyToManyField(
        "models.User",
        related_name="projects",
        through="project_members"
    )

    created_at = fields.DatetimeField(auto_now_add=True)
    deleted_at = fields.DatetimeField(null=True)

    class Meta:
        table = "projects"


class Task(models.Model):
    id = fields.IntField(pk=True)
    title = fields.CharField(max_length=200)

    project = fields.ForeignKeyField(
        "models.Project",
        related_name="tasks",
        on_delete=fields.CASCADE
    )
    creator = fields.ForeignKeyField(
        "models.User",
        related_name="created_tasks",
        on_delete=fields.SET_NULL,
        null=True
    )
    assignee = fields.ForeignKeyField(
        "models.User",
        related_name="assigned_tasks",
        on_delete=fields.SET_NULL,
        null=True
    )

    created_at = fields.DatetimeField(auto_now_add=True)
    deleted_at = fields.DatetimeField(null=True)

    class Meta:
        table = "tasks"

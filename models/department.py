from tortoise import fields, models


class Department(models.Model):
    id = fields.IntField(pk=True)
    name = fields.CharField(max_length=100)
    is_active = fields.BooleanField(default=True)

    organization = fields.ForeignKeyField(
        "models.Organization",
        related_name="departments",
        on_delete=fields.CASCADE
    )
    members = fields.ManyToManyField(
        "models.User",
        related_name="departments",
        through="department_members"
    )

    created_at = fields.DatetimeField(auto_now_add=True)
    deleted_at = fields.DatetimeField(null=True)

    class Meta:
        table = "departments"
        ordering = ["id"]

    def __str__(self):
        return self.name

from tortoise import fields, models


class Team(models.Model):
    id = fields.IntField(pk=True)
    name = fields.CharField(max_length=100)

    department = fields.ForeignKeyField(
        "models.Department",
        related_name="teams",
        on_delete=fields.CASCADE,
        null=True
    )
    members = fields.ManyToManyField(
        "models.User",
        related_name="teams",
        through="team_members"
    )

    created_at = fields.DatetimeField(auto_now_add=True)
    deleted_at = fields.DatetimeField(null=True)

    class Meta:
        table = "teams"

    def __str__(self):
        return self.name

from tortoise import fields, models


class Organization(models.Model):
    id = fields.IntField(pk=True)
    name = fields.CharField(max_length=100)

    # شناسه کاربر مالک؛ FK نیست چون User خودش به Organization اشاره می‌کند
    owner_id = fields.IntField(null=True)

    created_at = fields.DatetimeField(auto_now_add=True)
    deleted_at = fields.DatetimeField(null=True)

    class Meta:
        table = "organizations"

    def __str__(self):
        return self.name

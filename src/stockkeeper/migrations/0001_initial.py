import django.db.models.deletion
import django.utils.timezone
from django.db import migrations, models


def seed_inventories(apps, schema_editor):
    Inventory = apps.get_model("stockkeeper", "Inventory")
    # First row in a fresh table, so it gets id 1.
    Inventory.objects.create(name="Main", description="Default stock bucket")
    Inventory.objects.create(
        name="Expired",
        description="Unsold stock moved here after aging out of the main bucket",
    )


class Migration(migrations.Migration):

    initial = True

    dependencies = []

    operations = [
        migrations.CreateModel(
            name="Inventory",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("name", models.CharField(max_length=100, unique=True)),
                ("description", models.TextField(blank=True, default="")),
                ("is_active", models.BooleanField(default=True)),
                ("created_at", models.DateTimeField(default=django.utils.timezone.now)),
            ],
            options={
                "ordering": ["id"],
                "verbose_name_plural": "inventories",
            },
        ),
        migrations.CreateModel(
            name="Product",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("content", models.TextField()),
                ("uploaded_at", models.DateTimeField(db_index=True, default=django.utils.timezone.now)),
                ("sold", models.BooleanField(db_index=True, default=False)),
                ("order_id", models.CharField(blank=True, max_length=100, null=True)),
                ("sold_at", models.DateTimeField(blank=True, null=True)),
                ("moved_at", models.DateTimeField(blank=True, db_index=True, null=True)),
                (
                    "inventory",
                    models.ForeignKey(
                        default=1,
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="products",
                        to="stockkeeper.inventory",
                    ),
                ),
            ],
            options={
                "ordering": ["id"],
                "indexes": [models.Index(fields=["inventory", "sold"], name="product_inventory_sold")],
                "constraints": [
                    models.CheckConstraint(
                        condition=models.Q(("sold", False), models.Q(("order_id__isnull", False), ("sold_at__isnull", False)), _connector="OR"),
                        name="product_sold_has_order",
                    )
                ],
            },
        ),
        migrations.RunPython(seed_inventories, migrations.RunPython.noop),
    ]

from django.db import models
from django.db.models import Q
from django.utils import timezone


class Inventory(models.Model):
    """
    A named stock bucket.

    Bucket ``id = 1`` is seeded by the initial migration and can never be
    deleted. Products move between buckets; buckets themselves are only
    changed by operators.
    """

    name = models.CharField(max_length=100, unique=True)
    description = models.TextField(blank=True, default="")
    is_active = models.BooleanField(default=True)
    created_at = models.DateTimeField(default=timezone.now)

    class Meta:
        ordering = ["id"]
        verbose_name_plural = "inventories"

    def __str__(self) -> str:
        return f"{self.name} (#{self.pk})"


class ProductQuerySet(models.QuerySet):
    def available(self):
        return self.filter(sold=False)

    def in_bucket(self, bucket_id):
        if bucket_id is None:
            return self
        return self.filter(inventory_id=bucket_id)


class Product(models.Model):
    """
    One sellable unit of opaque text content.

    ``id`` order is allocation order: the lowest unsold id sells first.
    Once ``sold`` is set, ``order_id`` and ``sold_at`` are set with it and
    the row is never touched again except by a manual delete.
    """

    content = models.TextField()
    inventory = models.ForeignKey(
        Inventory,
        on_delete=models.PROTECT,
        related_name="products",
        default=1,
    )
    uploaded_at = models.DateTimeField(default=timezone.now, db_index=True)
    sold = models.BooleanField(default=False, db_index=True)
    order_id = models.CharField(max_length=100, null=True, blank=True)
    sold_at = models.DateTimeField(null=True, blank=True)
    # Set when aging migration moves the product; restarts its clock.
    moved_at = models.DateTimeField(null=True, blank=True, db_index=True)

    objects = ProductQuerySet.as_manager()

    class Meta:
        ordering = ["id"]
        indexes = [
            models.Index(fields=["inventory", "sold"], name="product_inventory_sold"),
        ]
        constraints = [
            models.CheckConstraint(
                condition=Q(sold=False) | Q(order_id__isnull=False, sold_at__isnull=False),
                name="product_sold_has_order",
            ),
        ]

    def __str__(self) -> str:
        state = f"sold to {self.order_id}" if self.sold else "available"
        return f"Product #{self.pk} in {self.inventory_id} ({state})"

"""Tables owned by the surrounding storefront and read by the order core.

Products, addresses, shop settings and notifications are managed by other
parts of the platform (catalog admin, address book, back office). The order
core only reaches them through ``apps.store.adapters``.
"""

from django.db import models


class Product(models.Model):
    sku = models.CharField(max_length=50, unique=True)
    name = models.CharField(max_length=200)
    price = models.DecimalField(max_digits=10, decimal_places=2)
    # NULL means stock is not tracked for this product.
    stock_quantity = models.PositiveIntegerField(null=True, blank=True, default=0)
    is_active = models.BooleanField(default=True)
    sales_count = models.PositiveIntegerField(default=0)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        db_table = "products"

    def __str__(self):
        return f"{self.sku} ({self.name})"


class Address(models.Model):
    class Kind(models.TextChoices):
        SHIPPING = "shipping"
        BILLING = "billing"

    user_id = models.CharField(max_length=64, db_index=True)
    type = models.CharField(max_length=20, choices=Kind.choices, default=Kind.SHIPPING)
    first_name = models.CharField(max_length=100, blank=True)
    last_name = models.CharField(max_length=100, blank=True)
    company = models.CharField(max_length=100, blank=True)
    address_line1 = models.CharField(max_length=200)
    address_line2 = models.CharField(max_length=200, blank=True)
    city = models.CharField(max_length=100)
    state = models.CharField(max_length=100, blank=True)
    postal_code = models.CharField(max_length=20, blank=True)
    country = models.CharField(max_length=100)
    phone = models.CharField(max_length=20, blank=True)
    is_default = models.BooleanField(default=False)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    SNAPSHOT_FIELDS = (
        "id", "type", "first_name", "last_name", "company", "address_line1",
        "address_line2", "city", "state", "postal_code", "country", "phone",
    )

    class Meta:
        db_table = "addresses"
        ordering = ["-is_default", "id"]

    def snapshot(self) -> dict:
        """Plain dict copy of the address, safe to store on an order."""
        return {name: getattr(self, name) for name in self.SNAPSHOT_FIELDS}


class StoreSetting(models.Model):
    class ValueType(models.TextChoices):
        STRING = "string"
        NUMBER = "number"
        BOOLEAN = "boolean"

    key = models.CharField(max_length=100, unique=True)
    value = models.TextField(blank=True, default="")
    type = models.CharField(max_length=20, choices=ValueType.choices, default=ValueType.STRING)
    category = models.CharField(max_length=50, default="general")
    description = models.TextField(blank=True, default="")
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        db_table = "settings"


class Notification(models.Model):
    user_id = models.CharField(max_length=64, db_index=True)
    type = models.CharField(max_length=50)
    title = models.CharField(max_length=200)
    message = models.TextField()
    data = models.JSONField(default=dict, blank=True)
    is_read = models.BooleanField(default=False)
    read_at = models.DateTimeField(null=True, blank=True)
    sent_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        db_table = "notifications"
        ordering = ["-sent_at", "-id"]

from django.db import models

from apps.store.models import Product


class CartLine(models.Model):
    """One (user, product) entry in a shopping cart.

    ``unit_price`` is the catalog price captured when the line was created;
    later catalog price changes do not touch carted lines.
    """

    user_id = models.CharField(max_length=64, db_index=True)
    product = models.ForeignKey(Product, on_delete=models.CASCADE, related_name="cart_lines")
    quantity = models.PositiveIntegerField()
    unit_price = models.DecimalField(max_digits=10, decimal_places=2)
    options = models.JSONField(default=dict, blank=True)
    added_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        db_table = "cart_lines"
        ordering = ["added_at", "id"]
        constraints = [
            models.UniqueConstraint(fields=["user_id", "product"], name="cart_line_user_product_uniq"),
        ]

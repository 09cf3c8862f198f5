"""Test OrderStatus parsing and display names."""

import pytest

from order_orchestrator.core.enums import OrderStatus
from order_orchestrator.core.errors import ValidationError


class TestOrderStatusParse:
    @pytest.mark.parametrize(
        "raw, expected",
        [
            ("pending", OrderStatus.PENDING),
            ("Processing", OrderStatus.PROCESSING),
            ("SHIPPED", OrderStatus.SHIPPED),
            (" delivered ", OrderStatus.DELIVERED),
            ("canceled", OrderStatus.CANCELLED),
            ("Pendiente", OrderStatus.PENDING),
            ("En Procesamiento", OrderStatus.PROCESSING),
            ("Enviado", OrderStatus.SHIPPED),
            ("Entregado", OrderStatus.DELIVERED),
            ("Cancelado", OrderStatus.CANCELLED),
            (OrderStatus.SHIPPED, OrderStatus.SHIPPED),
        ],
    )
    def test_accepted_spellings(self, raw, expected):
        assert OrderStatus.parse(raw) == expected

    @pytest.mark.parametrize("raw", [None, "", "lost", "returned"])
    def test_rejects_unknown(self, raw):
        with pytest.raises(ValidationError):
            OrderStatus.parse(raw)

    def test_display_name(self):
        assert OrderStatus.PROCESSING.display_name == "Processing"

import pytest
from protean import current_domain
from protean.integrations.pytest import DomainFixture


@pytest.fixture(scope="session")
def adapters_bed():
    from adapters.domain import adapters

    bed = DomainFixture(adapters)
    bed.setup()
    yield bed
    bed.teardown()


@pytest.fixture(autouse=True)
def _ctx(adapters_bed):
    from adapters.auth import reset_authenticator
    from adapters.fulfillment import reset_capability
    from adapters.ledger import reset_run_gate
    from shared.admin import reset_admin_key

    with adapters_bed.domain_context():
        yield
        for provider in current_domain.providers.values():
            provider._data_reset()
    reset_authenticator()
    reset_capability()
    reset_run_gate()
    reset_admin_key()


@pytest.fixture()
def fulfillment_request():
    from shared.fulfillment import FulfillmentRequest

    def _make(*items, payment_reference="pay-1", order_id="ord-1"):
        return FulfillmentRequest.model_validate(
            {
                "orderId": order_id,
                "paymentReference": payment_reference,
                "buyer": "0xbuyer",
                "items": [{"sku": sku, "quantity": quantity} for sku, quantity in items],
                "trigger": "finalized",
            }
        )

    return _make

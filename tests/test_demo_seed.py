"""Tests for the ``flask seed-demo`` command and its service."""

from procurement.models.auth import Role, Tenant, User
from procurement.models.master_data import Item
from procurement.services.demo_seed import seed_demo


class TestSeedDemo:

    def test_seed_creates_tenant_and_people(self):
        summary = seed_demo()
        assert summary["created"] is True
        tenant = Tenant.query.filter_by(slug="demo").one()
        assert User.query.filter_by(tenant_id=tenant.id).count() == 5
        assert Item.query.filter_by(tenant_id=tenant.id).count() == 3
        assert Role.query.filter_by(name="MTF Approver", level=2).count() == 1

    def test_seed_is_idempotent(self):
        first = seed_demo()
        second = seed_demo()
        assert second["created"] is False
        assert second["tenant_id"] == first["tenant_id"]
        assert Tenant.query.count() == 1
        assert User.query.count() == 5

    def test_cli_command(self, app):
        runner = app.test_cli_runner()
        result = runner.invoke(args=["seed-demo"])
        assert result.exit_code == 0
        assert Tenant.query.filter_by(slug="demo").count() == 1

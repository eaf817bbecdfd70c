"""
Tests for domain models — declaration, stack, actions, receipts, reports.
"""

import pytest
from pydantic import ValidationError as PydanticValidationError

from homelab.core.errors import CycleError, ValidationError
from homelab.core.models.action import Action, Receipt
from homelab.core.models.declaration import (
    CommandRequirement,
    FileRequirement,
    FirewallRule,
    HostDeclaration,
    PackageRequirement,
    Resource,
    ServiceRequirement,
    parse_ref,
)
from homelab.core.models.report import (
    EXIT_HALTED,
    EXIT_OK,
    EXIT_PARTIAL,
    EXIT_VALIDATION,
    RunReport,
    exit_code_for,
)
from homelab.core.models.stack import StackDeclaration

# ── Declaration ──────────────────────────────────────────────────────


class TestResources:
    def test_package_from_string(self):
        pkg = PackageRequirement.model_validate("curl")
        assert pkg.name == "curl"
        assert pkg.state == "present"
        assert pkg.ref == "package:curl"

    def test_package_rejects_bad_name(self):
        with pytest.raises(PydanticValidationError):
            PackageRequirement(name="not a package")

    def test_service_from_string(self):
        svc = ServiceRequirement.model_validate("cockpit.socket")
        assert svc.enabled and svc.running
        assert svc.ref == "service:cockpit.socket"

    def test_requires_unknown_kind(self):
        with pytest.raises(PydanticValidationError, match="unknown resource kind"):
            PackageRequirement(name="curl", requires=["widget:x"])

    def test_file_mode_from_yaml_integer(self):
        # YAML reads 0644 as 420
        f = FileRequirement(path="/etc/x", content="", mode=420)
        assert f.mode == "0644"
        assert f.mode_bits == 0o644

    def test_file_mode_padding(self):
        assert FileRequirement(path="/etc/x", content="", mode="600").mode == "0600"

    @pytest.mark.parametrize("mode", ["00644", "644", "0644", 420])
    def test_file_mode_normalised(self, mode):
        assert FileRequirement(path="/etc/x", content="", mode=mode).mode == "0644"

    def test_file_mode_invalid(self):
        with pytest.raises(PydanticValidationError, match="invalid file mode"):
            FileRequirement(path="/etc/x", content="", mode="0849")

    def test_file_relative_path(self):
        with pytest.raises(PydanticValidationError, match="absolute"):
            FileRequirement(path="etc/x", content="")

    def test_file_needs_exactly_one_source(self):
        with pytest.raises(PydanticValidationError, match="exactly one"):
            FileRequirement(path="/etc/x")
        with pytest.raises(PydanticValidationError, match="exactly one"):
            FileRequirement(path="/etc/x", content="a", template="b.tmpl")

    def test_command_creates_must_be_absolute(self):
        with pytest.raises(PydanticValidationError):
            CommandRequirement(name="x", command="true", creates="relative")

    def test_firewall_rule_shorthand(self):
        rule = FirewallRule.model_validate("53/udp")
        assert rule.port == 53
        assert rule.protocol == "udp"
        assert rule.key == "53/udp/in"
        assert rule.spec == "53/udp"

    def test_firewall_rule_port_range(self):
        with pytest.raises(PydanticValidationError):
            FirewallRule(port=70000)

    def test_parse_ref(self):
        assert parse_ref("file:/etc/x") == ("file", "/etc/x")
        with pytest.raises(ValueError):
            parse_ref("nokind")


class TestHostDeclaration:
    def test_resources_follow_section_order(self):
        decl = HostDeclaration.model_validate(
            {
                "services": ["docker"],
                "packages": ["curl", "git"],
                "sections": ["services", "packages"],
            }
        )
        assert [r.ref for r in decl.resources()] == [
            "service:docker",
            "package:curl",
            "package:git",
        ]

    def test_firewall_resources(self):
        decl = HostDeclaration.model_validate({"firewall": {"rules": ["22/tcp"]}})
        refs = [r.ref for r in decl.resources()]
        assert refs == ["firewall-policy:default", "firewall:22/tcp/in"]
        # the policy is critical unless declared otherwise
        assert decl.firewall.policy.critical

    def test_unknown_field_rejected(self):
        with pytest.raises(PydanticValidationError):
            HostDeclaration.model_validate({"pacakges": ["curl"]})

    def test_resource_base_is_abstract(self):
        with pytest.raises(TypeError, match="abstract"):
            Resource()


class TestStackDeclaration:
    def test_output_paths(self):
        stack = StackDeclaration(directory="/srv/homelab")
        assert stack.compose_path == "/srv/homelab/compose.yml"
        assert stack.env_path == "/srv/homelab/.env"
        assert stack.ref == "stack:homelab"

    def test_unknown_depends_on(self):
        with pytest.raises(PydanticValidationError, match="unknown service 'db'"):
            StackDeclaration(services=[{"name": "app", "image": "x", "depends_on": ["db"]}])

    def test_env_and_secret_clash(self):
        with pytest.raises(PydanticValidationError, match="both as env and secret"):
            StackDeclaration(
                env={"DB_PASSWORD": "x"},
                secrets=[{"env": "DB_PASSWORD", "service": "db", "name": "password"}],
            )

    def test_invalid_env_name(self):
        with pytest.raises(PydanticValidationError):
            StackDeclaration(env={"lower": "x"})

    def test_secret_length_bounds(self):
        with pytest.raises(PydanticValidationError):
            StackDeclaration(
                secrets=[{"env": "X", "service": "s", "name": "n", "length": 4}]
            )


# ── Receipts and reports ─────────────────────────────────────────────


class TestReceipt:
    def test_success(self):
        r = Receipt.success(action_id="install:curl", adapter="apt", output="done")
        assert r.ok and not r.failed and not r.skipped
        assert r.label == "ok"

    def test_failure_label(self):
        r = Receipt.failure(action_id="a", error="boom")
        assert r.failed
        assert r.error_kind == "command"
        assert r.label == "failed"

    def test_timeout_label(self):
        r = Receipt.failure(action_id="a", error="slow", error_kind="timeout")
        assert r.label == "failed:timeout"

    def test_skip(self):
        r = Receipt.skip(action_id="a", reason="interrupted")
        assert r.skipped
        assert r.output == "interrupted"


def _action(action_id: str, critical: bool = False) -> Action:
    return Action(
        id=action_id,
        kind="install",
        adapter="apt",
        resource=f"package:{action_id}",
        critical=critical,
        params={"package": action_id},
    )


class TestRunReport:
    def test_empty_is_ok(self):
        report = RunReport()
        assert report.status == "ok"
        assert report.exit_code == EXIT_OK

    def test_partial(self):
        report = RunReport()
        report.append(_action("a"), Receipt.success(action_id="a"))
        report.append(_action("b"), Receipt.failure(action_id="b", error="x"))
        assert report.status == "partial"
        assert report.exit_code == EXIT_PARTIAL
        assert report.outcome_of("b") == "failed"
        assert report.outcome_of("missing") is None

    def test_halted(self):
        report = RunReport(halted_by="a")
        report.append(_action("a", critical=True), Receipt.failure(action_id="a", error="x"))
        assert report.status == "halted"
        assert report.exit_code == EXIT_HALTED

    def test_interrupted(self):
        report = RunReport(interrupted=True)
        assert report.status == "interrupted"
        assert report.exit_code == EXIT_HALTED

    def test_params_not_serialized(self):
        report = RunReport()
        action = Action(
            id="write:/srv/lab/.env",
            kind="write-file",
            adapter="file",
            resource="file:/srv/lab/.env",
            params={"content": "DB_PASSWORD=hunter2"},
        )
        report.append(action, Receipt.success(action_id=action.id))
        dumped = report.model_dump_json()
        assert "hunter2" not in dumped

    def test_roundtrip_without_params(self):
        report = RunReport(run_id="run-1", declaration="testbox")
        report.append(_action("curl"), Receipt.success(action_id="curl"))
        loaded = RunReport.model_validate_json(report.model_dump_json())
        assert loaded.run_id == "run-1"
        assert loaded.entries[0].action.id == "curl"
        assert loaded.entries[0].action.params == {}

    def test_to_dict(self):
        report = RunReport(run_id="run-1")
        report.append(_action("a"), Receipt.success(action_id="a"))
        d = report.to_dict()
        assert d["status"] == "ok"
        assert d["total"] == 1
        assert d["entries"][0]["outcome"] == "ok"


class TestExitCodeFor:
    def test_validation(self):
        assert exit_code_for(ValidationError(["bad"])) == EXIT_VALIDATION

    def test_everything_else_halts(self):
        assert exit_code_for(CycleError("loop")) == EXIT_HALTED

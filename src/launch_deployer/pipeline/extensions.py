"""Provisioning of the databases and services a launch plan asks for."""

from __future__ import annotations

import shlex
from typing import Any, Dict, Optional

from ..engine import CommandRunner, EventStream
from .catalog import Artifact


def _q(value: Any) -> str:
    return shlex.quote(str(value))


def _flag(name: str, value: Any) -> str:
    """`` --name value``, or nothing when the plan leaves ``value`` unset."""
    if value is None:
        return ""
    return f" --{name} {_q(value)}"


def fly_postgres_command(
    flyctl: str, pg: Dict[str, Any], org: Optional[str], region: Optional[str]
) -> str:
    cmd = (
        f"{flyctl} pg create --flex{_flag('org', org)} --name {_q(pg['app_name'])}"
        f"{_flag('region', region)}"
    )
    if pg.get("vm_size"):
        cmd += f" --vm-size {_q(pg['vm_size'])}"
    if pg.get("vm_ram"):
        cmd += f" --vm-memory {_q(pg['vm_ram'])}"
    if pg.get("nodes"):
        cmd += f" --initial-cluster-size {_q(pg['nodes'])}"
    if pg.get("disk_size_gb"):
        cmd += f" --volume-size {_q(pg['disk_size_gb'])}"
    return cmd


def supabase_command(flyctl: str, supabase: Dict[str, Any], org: Optional[str], app_name: str) -> str:
    return (
        f"{flyctl} ext supabase create{_flag('org', org)}{_flag('name', supabase.get('db_name'))}"
        f"{_flag('region', supabase.get('region'))} --app {_q(app_name)} --yes"
    )


def upstash_redis_command(
    flyctl: str, upstash: Dict[str, Any], name: str, org: Optional[str], region: Optional[str]
) -> str:
    cmd = f"{flyctl} redis create --name {_q(name)}{_flag('org', org)}{_flag('region', region)}"
    eviction = upstash.get("eviction")
    if eviction is True:
        cmd += " --enable-eviction"
    elif eviction is False:
        cmd += " --disable-eviction"
    regions = upstash.get("regions")
    if regions:
        cmd += f" --replica-regions {_q(','.join(regions))}"
    return cmd


def tigris_command(flyctl: str, tigris: Dict[str, Any], org: Optional[str], app_name: str) -> str:
    cmd = f"{flyctl} ext tigris create{_flag('org', org)} --app {_q(app_name)} --yes"
    if tigris.get("name"):
        cmd += f" --name {_q(tigris['name'])}"
    if tigris.get("public") is True:
        cmd += " --public"
    if tigris.get("accelerate") is True:
        cmd += " --accelerate"
    if tigris.get("website_domain_name"):
        cmd += f" --website-domain-name {_q(tigris['website_domain_name'])}"
    return cmd


def sentry_command(flyctl: str, app_name: str) -> str:
    return f"{flyctl} ext sentry create --app {_q(app_name)} --yes"


class ExtensionProvisioner:
    """Creates one extension per call; each publishes its artifact before running."""

    def __init__(
        self,
        runner: CommandRunner,
        stream: EventStream,
        *,
        flyctl: str,
        app_name: str,
        org: Optional[str],
        region: Optional[str],
    ) -> None:
        self.runner = runner
        self.stream = stream
        self.flyctl = flyctl
        self.app_name = app_name
        self.org = org
        self.region = region

    def fly_postgres(self, pg: Dict[str, Any]) -> None:
        name = pg["app_name"]
        self.stream.artifact(
            Artifact.FLY_POSTGRES, {"name": name, "region": self.region, "config": pg}
        )
        self.runner.run(fly_postgres_command(self.flyctl, pg, self.org, self.region))
        self.runner.run(f"{self.flyctl} pg attach {_q(name)} --app {_q(self.app_name)} -y")

    def supabase(self, supabase: Dict[str, Any]) -> None:
        self.stream.artifact(Artifact.SUPABASE_POSTGRES, {"config": supabase})
        self.runner.run(supabase_command(self.flyctl, supabase, self.org, self.app_name))

    def upstash_redis(self, upstash: Dict[str, Any]) -> None:
        name = f"{self.app_name}-redis"
        self.stream.artifact(
            Artifact.UPSTASH_REDIS, {"config": upstash, "region": self.region, "name": name}
        )
        self.runner.run(upstash_redis_command(self.flyctl, upstash, name, self.org, self.region))

    def tigris(self, tigris: Dict[str, Any]) -> None:
        self.stream.artifact(Artifact.TIGRIS_OBJECT_STORAGE, {"config": tigris})
        self.runner.run(tigris_command(self.flyctl, tigris, self.org, self.app_name))

    def sentry(self) -> None:
        self.runner.run(sentry_command(self.flyctl, self.app_name))

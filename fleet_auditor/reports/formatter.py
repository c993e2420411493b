"""
    Report formatting functions
"""
from fleet_auditor.core.models import FleetAuditReport, HealthCheckResult, TargetAuditResult


def format_health(health: HealthCheckResult) -> list[str]:
    lines = [f"  health: {health.score}/100 ({'healthy' if health.is_healthy else 'UNHEALTHY'})"]
    for issue in health.issues:
        lines.append(f"    ! {issue}")
    for hint in health.remediation:
        lines.append(f"    > {hint}")
    return lines


def format_target(result: TargetAuditResult) -> list[str]:
    lines = [f"\n{result.target.address}: {result.status} ({result.duration_ms:.0f} ms)"]
    if result.error:
        lines.append(f"  error: {result.error}")
    if result.health is not None:
        lines.extend(format_health(result.health))
    if result.profile is not None:
        p = result.profile
        lines.append(f"  profile: tier={p.tier.value} jobs={p.safe_parallel_jobs} "
                     f"job_timeout={p.job_timeout}s overall={p.overall_timeout}s"
                     + (" (cached)" if p.cached else ""))
        if p.constraints:
            lines.append(f"    constraints: {', '.join(p.constraints)}")
    if result.plan is not None:
        lines.append(f"  plan: {result.plan.strategy} -> {', '.join(result.plan.collectors) or '(none)'}")
    for o in result.outcomes:
        source = f" via {o.data_source}" if o.data_source else ""
        lines.append(f"  - {o.collector}: {o.status}{source} ({o.execution_time_ms:.0f} ms)")
        for err in o.errors:
            lines.append(f"      {err}")
    if result.incompatible:
        lines.append(f"  incompatible: {', '.join(result.incompatible)}")
    return lines


def format_report(report: FleetAuditReport) -> str:
    s = report.summary
    lines = [
        f"Fleet audit{' (dry run)' if report.dry_run else ''}: {s.total_targets} target(s)",
        f"  audited={s.audited} planned={s.planned} healthy={s.healthy} unhealthy={s.unhealthy} "
        f"not_attempted={s.not_attempted} errors={s.errored}",
        f"  successful collectors: {s.successful_collectors}",
    ]
    for name, stats in s.collectors.items():
        lines.append(f"    {name}: {stats.succeeded}/{stats.attempted} ({stats.success_rate:.0%})")

    for result in report.targets:
        lines.extend(format_target(result))

    return "\n".join(lines)

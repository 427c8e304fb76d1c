#!/usr/bin/env python3
"""
Lifecycle Engine Health Check Script.

Checks a running Lifecycle Engine API and reports its status, the state of
the workflow backlog (failed and overdue workflows) and the audit
trail.
"""

import json
import logging
import sys
from datetime import datetime, timezone
from typing import Any, Dict, List

import requests

# Configure logging
logging.basicConfig(level=logging.INFO, format='%(asctime)s - %(levelname)s - %(message)s')
logger = logging.getLogger(__name__)

STATUS_ICONS = {
    "healthy": "✅",
    "degraded": "⚠️",
    "unhealthy": "❌",
    "unknown": "❓"
}


class HealthChecker:
    """Health checker for a Lifecycle Engine API deployment."""

    def __init__(self, api_url: str = "http://localhost:8000", timeout: float = 10):
        self.api_url = api_url.rstrip('/')
        self.timeout = timeout
        self.results: Dict[str, Any] = {}

    def run_all_checks(self) -> Dict[str, Any]:
        """Run all health checks."""
        logger.info("Starting health check...")

        self.results = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "overall_status": "unknown",
            "checks": {},
            "metrics": {},
            "recommendations": []
        }

        self._check_api_health()
        self._check_workflows()
        self._check_due_workflows()
        self._check_audit_system()

        self._calculate_overall_status()
        self._generate_recommendations()

        logger.info(f"Health check completed. Overall status: {self.results['overall_status']}")
        return self.results

    def _get(self, path: str, **params) -> requests.Response:
        return requests.get(f"{self.api_url}{path}", params=params or None, timeout=self.timeout)

    def _check_api_health(self):
        """Check API service health."""
        try:
            response = self._get("/health")
            if response.status_code == 200:
                health_data = response.json()
                self.results["checks"]["api"] = {
                    "status": "healthy" if health_data.get("status") == "healthy" else "degraded",
                    "response_time": response.elapsed.total_seconds(),
                    "details": health_data
                }
            else:
                self.results["checks"]["api"] = {
                    "status": "unhealthy",
                    "error": f"HTTP {response.status_code}"
                }
        except requests.RequestException as e:
            self.results["checks"]["api"] = {"status": "unhealthy", "error": str(e)}

    def _count_workflows(self, status: str) -> int:
        response = self._get("/workflows", status=status, limit=1)
        response.raise_for_status()
        return response.json().get("total", 0)

    def _check_workflows(self):
        """Count workflows by status; failed workflows need an operator."""
        try:
            counts = {
                status: self._count_workflows(status)
                for status in ["PENDING", "IN_PROGRESS", "FAILED", "COMPLETED", "CANCELLED"]
            }
            self.results["metrics"]["workflows"] = counts
            self.results["checks"]["workflows"] = {
                "status": "degraded" if counts["FAILED"] else "healthy",
                "note": f"{counts['FAILED']} failed, {counts['IN_PROGRESS']} in progress"
            }
        except (requests.RequestException, ValueError) as e:
            self.results["checks"]["workflows"] = {"status": "unhealthy", "error": str(e)}

    def _check_due_workflows(self):
        """Scheduled workflows past their start time mean the scheduler is not being triggered."""
        try:
            response = self._get("/workflows", status="PENDING", limit=200)
            response.raise_for_status()
            now = datetime.now(timezone.utc)

            overdue = []
            for item in response.json().get("items", []):
                scheduled_for = item["workflow"].get("scheduled_for")
                if scheduled_for and datetime.fromisoformat(scheduled_for.replace("Z", "+00:00")) <= now:
                    overdue.append(item["workflow"]["id"])

            self.results["metrics"]["overdue_workflows"] = len(overdue)
            self.results["checks"]["scheduler"] = {
                "status": "degraded" if overdue else "healthy",
                "note": f"{len(overdue)} scheduled workflows are due but not started"
            }
        except (requests.RequestException, ValueError, KeyError) as e:
            self.results["checks"]["scheduler"] = {"status": "unhealthy", "error": str(e)}

    def _check_audit_system(self):
        """Check audit system health."""
        try:
            response = self._get("/audit", limit=20)
            if response.status_code == 200:
                audit_data = response.json()
                failures = [r for r in audit_data if not r.get("success", True)]
                self.results["metrics"]["recent_audit_failures"] = len(failures)
                self.results["checks"]["audit_system"] = {
                    "status": "healthy",
                    "recent_logs": len(audit_data)
                }
            else:
                self.results["checks"]["audit_system"] = {
                    "status": "unhealthy",
                    "error": f"HTTP {response.status_code}"
                }
        except requests.RequestException as e:
            self.results["checks"]["audit_system"] = {"status": "unhealthy", "error": str(e)}

    def _calculate_overall_status(self):
        """Calculate overall system status."""
        statuses = [check.get("status", "unknown") for check in self.results["checks"].values()]

        if all(status == "healthy" for status in statuses):
            self.results["overall_status"] = "healthy"
        elif "unhealthy" in statuses:
            self.results["overall_status"] = "unhealthy"
        elif "degraded" in statuses:
            self.results["overall_status"] = "degraded"
        else:
            self.results["overall_status"] = "warning"

    def _generate_recommendations(self):
        """Generate health recommendations."""
        recommendations: List[str] = []
        checks = self.results["checks"]
        metrics = self.results["metrics"]

        if checks.get("api", {}).get("status") != "healthy":
            recommendations.append("API service is not healthy - check logs and restart if necessary")

        if metrics.get("workflows", {}).get("FAILED"):
            recommendations.append("Failed workflows need attention - retry or skip their failed tasks")

        if metrics.get("overdue_workflows"):
            recommendations.append("Trigger POST /scheduler/run-due periodically (e.g. from cron)")

        self.results["recommendations"] = recommendations

    def print_report(self):
        """Print formatted health report."""
        print("\n" + "=" * 60)
        print("🔍 LIFECYCLE ENGINE HEALTH REPORT")
        print("=" * 60)
        print(f"Timestamp: {self.results['timestamp']}")
        print(f"Overall Status: {self.results['overall_status'].upper()}")
        print()

        print("📊 COMPONENT STATUS")
        print("-" * 40)
        for component, check in self.results["checks"].items():
            status_icon = STATUS_ICONS.get(check.get("status"), "❓")
            print(f"{status_icon} {component.replace('_', ' ').title()}: {check.get('status', 'unknown').upper()}")

            if "error" in check:
                print(f"   Error: {check['error']}")
            if "note" in check:
                print(f"   Note: {check['note']}")
        print()

        workflows = self.results["metrics"].get("workflows")
        if workflows:
            print("📈 WORKFLOWS")
            print("-" * 40)
            for status, count in workflows.items():
                print(f"{status.replace('_', ' ').title()}: {count}")
            print()

        if self.results.get("recommendations"):
            print("💡 RECOMMENDATIONS")
            print("-" * 40)
            for rec in self.results["recommendations"]:
                print(f"• {rec}")

        print("\n" + "=" * 60)

    def save_report(self, filename: str):
        """Save health report to JSON file."""
        with open(filename, 'w', encoding='utf-8') as f:
            json.dump(self.results, f, indent=2, default=str)
        print(f"Health report saved to: {filename}")


def main():
    """Main entry point."""
    import argparse

    parser = argparse.ArgumentParser(description="Lifecycle Engine Health Check")
    parser.add_argument("--api-url", default="http://localhost:8000",
                        help="Lifecycle Engine API base URL")
    parser.add_argument("--save", help="Save report to JSON file")
    parser.add_argument("--quiet", action="store_true",
                        help="Suppress output, only return exit code")

    args = parser.parse_args()

    checker = HealthChecker(args.api_url)
    results = checker.run_all_checks()

    if not args.quiet:
        checker.print_report()

    if args.save:
        checker.save_report(args.save)

    status_codes = {
        "healthy": 0,
        "degraded": 1,
        "unhealthy": 2,
        "warning": 3,
        "unknown": 4
    }

    sys.exit(status_codes.get(results["overall_status"], 4))


if __name__ == "__main__":
    main()

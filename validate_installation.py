#!/usr/bin/env python3
"""
Validation script for User Reconcile.

This script validates that all dependencies are installed and that the core
reconciliation logic works against in-memory stores.
"""

import sys
import importlib


def check_dependency(package_name, import_name=None):
    """Check if a package/module can be imported."""
    if import_name is None:
        import_name = package_name

    try:
        importlib.import_module(import_name)
        return True, f"✓ {package_name} available"
    except ImportError as e:
        return False, f"✗ {package_name} missing: {e}"


def validate_dependencies():
    """Validate all required dependencies."""
    print("=== Dependency Validation ===")

    dependencies = [
        ("ldap3", "ldap3"),
        ("PyYAML", "yaml"),
    ]

    all_ok = True
    for pkg_name, import_name in dependencies:
        ok, message = check_dependency(pkg_name, import_name)
        print(f"  {message}")
        if not ok:
            all_ok = False

    return all_ok


def validate_core_modules():
    """Validate core application modules."""
    print("\n=== Core Module Validation ===")

    modules = [
        "user_reconcile.models",
        "user_reconcile.field_mapping",
        "user_reconcile.collaborators",
        "user_reconcile.engine",
        "user_reconcile.sources",
        "user_reconcile.ldap_directory",
        "user_reconcile.config",
        "user_reconcile.logging_setup",
        "user_reconcile.retry",
        "user_reconcile.main",
    ]

    all_ok = True
    for module in modules:
        ok, message = check_dependency(module, module)
        print(f"  {message}")
        if not ok:
            all_ok = False

    return all_ok


def validate_functionality():
    """Run one dry-run and one apply pass against in-memory stores."""
    print("\n=== Functionality Validation ===")

    try:
        from user_reconcile.collaborators import UserSource, UserTarget
        from user_reconcile.engine import ReconciliationEngine
        from user_reconcile.field_mapping import FieldMapping
        from user_reconcile.models import UserRecord

        class MemorySource(UserSource):
            def fetch_all(self):
                return [UserRecord('alice', 'Alice', 'Smith', 'alice@example.com')]

        class MemoryTarget(UserTarget):
            def __init__(self):
                self.users = {'alice': UserRecord('alice', 'Alice', 'Smith', 'old@example.com')}

            def resolve(self, identifier):
                return self.users.get(identifier)

            def persist(self, record):
                self.users[record.sam_account_name] = record

        target = MemoryTarget()
        engine = ReconciliationEngine(MemorySource(), target, FieldMapping.from_config({}))

        summary = engine.reconcile(dry_run=True)
        assert summary['would_update'] == 1 and target.users['alice'].email == 'old@example.com'
        print("  ✓ Dry run reports without writing")

        summary = engine.reconcile(dry_run=False)
        assert summary['updated'] == 1 and target.users['alice'].email == 'alice@example.com'
        print("  ✓ Apply writes source values")

        summary = engine.reconcile(dry_run=False)
        assert summary['up_to_date'] == 1
        print("  ✓ Second pass finds nothing to update")

        return True

    except Exception as e:
        print(f"  ✗ Functionality test failed: {e}")
        return False


def validate_cli():
    """Validate command-line interface."""
    print("\n=== CLI Validation ===")

    import subprocess

    result = subprocess.run([sys.executable, "-m", "user_reconcile.main", "--help"],
                            capture_output=True, text=True)
    if result.returncode == 0:
        print("  ✓ Help command working")
        return True

    print("  ✗ Help command failed")
    return False


def main():
    """Run all validations."""
    print("User Reconcile - Installation Validation")
    print("=" * 50)

    all_validations = [
        validate_dependencies(),
        validate_core_modules(),
        validate_functionality(),
        validate_cli(),
    ]

    print("\n=== Summary ===")
    if all(all_validations):
        print("✓ All validations passed!")
        print("\nNext steps:")
        print("  1. Copy config.example.yaml to config.yaml and fill in source and target settings")
        print("  2. Test with: python -m user_reconcile.main --health-check")
        print("  3. Review changes with: python -m user_reconcile.main --dry-run")
        print("  4. Apply changes with: python -m user_reconcile.main --apply")
        return 0
    else:
        print("✗ Some validations failed!")
        print("Please resolve the issues above before using the application.")
        return 1


if __name__ == "__main__":
    sys.exit(main())

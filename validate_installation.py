#!/usr/bin/env python3
"""
Validation script for LDAP Provision.

This script checks that the dependencies are installed and that the
package works end to end without a directory server.
"""

import os
import sys
import shutil
import tempfile
import importlib
import subprocess


def check_dependency(package_name, import_name=None):
    """Check if a package/module can be imported."""
    if import_name is None:
        import_name = package_name

    try:
        importlib.import_module(import_name)
        return True, f"✓ {package_name} available"
    except ImportError as e:
        return False, f"✗ {package_name} missing: {e}"


def validate_imports():
    """Validate third-party dependencies and the package modules."""
    print("=== Import Validation ===")

    imports = [
        ("ldap3", "ldap3"),
        ("PyYAML", "yaml"),
        ("ldap_provision.config", None),
        ("ldap_provision.logging_setup", None),
        ("ldap_provision.ldap_client", None),
        ("ldap_provision.descriptors", None),
        ("ldap_provision.synchronizer", None),
        ("ldap_provision.lister", None),
        ("ldap_provision.main", None),
    ]

    all_ok = True
    for name, import_name in imports:
        ok, message = check_dependency(name, import_name)
        print(f"  {message}")
        all_ok = all_ok and ok
    return all_ok


def validate_functionality():
    """Write the default descriptors and load them back."""
    print("\n=== Functionality Validation ===")

    temp_dir = tempfile.mkdtemp(prefix='ldap_provision_validate_')
    try:
        from ldap_provision.config import load_config
        from ldap_provision.descriptors import write_default_files, load_tree, load_users

        load_config(os.devnull, require_ldap=False)
        print("  ✓ Configuration loading")

        write_default_files(temp_dir)
        tree = load_tree(os.path.join(temp_dir, 'tree.json'))
        users = load_users(os.path.join(temp_dir, 'users.json'))
        print(f"  ✓ Default descriptors ({len(tree)} tree entries, {len(users)} users)")
        return True
    except Exception as e:
        print(f"  ✗ Functionality test failed: {e}")
        return False
    finally:
        shutil.rmtree(temp_dir, ignore_errors=True)


def validate_cli():
    """Validate command-line interface."""
    print("\n=== CLI Validation ===")

    result = subprocess.run([sys.executable, "-m", "ldap_provision", "--help"],
                            capture_output=True, text=True)
    if result.returncode != 0:
        print("  ✗ Help command failed")
        return False
    print("  ✓ Help command working")

    # Without AD_* variables the list command must stop with a configuration error
    env = {key: value for key, value in os.environ.items() if not key.startswith('AD_')}
    result = subprocess.run([sys.executable, "-m", "ldap_provision", "--config", os.devnull, "list"],
                            capture_output=True, text=True, env=env)
    if result.returncode != 2:
        print(f"  ✗ Missing configuration returned exit code {result.returncode}, expected 2")
        return False
    print("  ✓ Missing configuration detected")
    return True


def main():
    """Run all validations."""
    print("LDAP Provision - Installation Validation")
    print("=" * 50)

    all_validations = [
        validate_imports(),
        validate_functionality(),
        validate_cli(),
    ]

    print("\n=== Summary ===")
    if all(all_validations):
        print("✓ All validations passed!")
        print("\nNext steps:")
        print("  1. Export AD_HOST, AD_PORT, AD_DN and AD_PWD")
        print("  2. Scaffold descriptors: ldap-provision create-default-files")
        print("  3. Inspect the directory: ldap-provision list")
        print("  4. Provision: ldap-provision create")
        return 0
    print("✗ Some validations failed!")
    return 1


if __name__ == "__main__":
    sys.exit(main())

"""
Descriptor files for LDAP Provision.

A tree descriptor lists organizational entries to create; a users descriptor
lists accounts to create or update. Both are JSON arrays. This module loads
them into records and writes the default templates.
"""

import os
import json
import logging
from typing import Dict, List, Any, NamedTuple

logger = logging.getLogger(__name__)

USERS_FILENAME = 'users.json'
TREE_FILENAME = 'tree.json'

DEFAULT_USERS = [
    {
        'user': 'User 1',
        'password': 'passwd',
        'ou': 'Operations',
        'username': 'user1'
    },
    {
        'user': 'User 2',
        'password': 'passwd',
        'ou': 'Development',
        'username': 'user2'
    }
]

DEFAULT_TREE = [
    {
        'dn': 'CN=Users,DC=global,DC=domain,DC=net',
        'attributes': {
            'objectClass': ['top', 'organizationalPerson'],
            'cn': ['Users']
        }
    }
]


class DescriptorError(Exception):
    """Raised when a descriptor file cannot be read or has the wrong shape."""
    pass


class TreeNode(NamedTuple):
    """One organizational entry to create."""
    dn: str
    attributes: Dict[str, List[str]]

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'TreeNode':
        dn = data.get('dn')
        if not isinstance(dn, str) or not dn:
            raise DescriptorError(f"Tree entry has no 'dn': {data!r}")

        attributes = data.get('attributes') or {}
        if not isinstance(attributes, dict):
            raise DescriptorError(f"Attributes of {dn} must be an object")

        values = {}
        for name, attr_values in attributes.items():
            if not isinstance(attr_values, list) or not all(isinstance(value, str) for value in attr_values):
                raise DescriptorError(f"Attribute {name} of {dn} must be a list of strings")
            values[name] = list(attr_values)
        return cls(dn=dn, attributes=values)

    def to_dict(self) -> Dict[str, Any]:
        return {'dn': self.dn, 'attributes': {name: list(v) for name, v in self.attributes.items()}}


class UserRecord(NamedTuple):
    """One account to create or update."""
    display_name: str
    password: str
    organizational_unit: str
    username: str

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'UserRecord':
        missing = [key for key in ('user', 'password', 'ou', 'username') if key not in data]
        if missing:
            raise DescriptorError(f"User entry is missing {', '.join(missing)}: {data.get('username', '?')}")
        invalid = [key for key in ('user', 'password', 'ou', 'username') if not isinstance(data[key], str)]
        if invalid:
            raise DescriptorError(f"User entry values must be strings: {', '.join(invalid)}")
        return cls(
            display_name=data['user'],
            password=data['password'],
            organizational_unit=data['ou'],
            username=data['username']
        )

    def to_dict(self) -> Dict[str, str]:
        return {
            'user': self.display_name,
            'password': self.password,
            'ou': self.organizational_unit,
            'username': self.username
        }

    def __repr__(self):
        return (f"UserRecord(display_name={self.display_name!r}, password='****', "
                f"organizational_unit={self.organizational_unit!r}, username={self.username!r})")


def _read_json_array(path: str) -> List[Any]:
    try:
        with open(path, 'r', encoding='utf-8') as f:
            data = json.load(f)
    except OSError as e:
        raise DescriptorError(f"Failed to read JSON file {path}: {e}")
    except ValueError as e:
        raise DescriptorError(f"Failed to parse JSON file {path}: {e}")

    if not isinstance(data, list):
        raise DescriptorError(f"{path} must contain a JSON array")
    for index, item in enumerate(data):
        if not isinstance(item, dict):
            raise DescriptorError(f"{path}[{index}] must be a JSON object")
    return data


def load_tree(path: str) -> List[TreeNode]:
    """
    Load a tree descriptor.

    Args:
        path: Path to the tree JSON file

    Returns:
        Tree nodes in file order

    Raises:
        DescriptorError: If the file is unreadable or malformed
    """
    nodes = [TreeNode.from_dict(item) for item in _read_json_array(path)]
    logger.debug(f"Loaded {len(nodes)} tree entries from {path}")
    return nodes


def load_users(path: str) -> List[UserRecord]:
    """
    Load a users descriptor.

    Args:
        path: Path to the users JSON file

    Returns:
        User records in file order

    Raises:
        DescriptorError: If the file is unreadable or malformed
    """
    users = [UserRecord.from_dict(item) for item in _read_json_array(path)]
    logger.debug(f"Loaded {len(users)} users from {path}")
    return users


def write_default_files(path: str = '.') -> List[str]:
    """
    Write template users.json and tree.json files.

    Existing files are overwritten.

    Args:
        path: Directory to write into

    Returns:
        Absolute paths of the written files
    """
    templates = {
        USERS_FILENAME: DEFAULT_USERS,
        TREE_FILENAME: DEFAULT_TREE,
    }

    written = []
    for filename, content in templates.items():
        full_path = os.path.abspath(os.path.join(path, filename))
        try:
            with open(full_path, 'w', encoding='utf-8') as f:
                json.dump(content, f, indent=4)
                f.write('\n')
            os.chmod(full_path, 0o644)
        except OSError as e:
            raise DescriptorError(f"Failed to create {full_path} file: {e}")
        logger.info(f"Wrote {full_path}")
        written.append(full_path)

    return written

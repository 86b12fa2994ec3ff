"""Fingerprints for stage invocations.

A stage's output is reused only when it was produced from the same inputs. The
fingerprint of a stage is the md5 hash of everything that determines what the
stage is given: its name, its parameters, and the name of every store it reads
and writes. Store names embed the version prefix, so changing a version token
changes the fingerprint of every stage that touches a store at that depth,
while moving the whole data root does not.
"""

import hashlib
import json


def invocation_representation(
    stage: str, stores: dict[str, str], params: dict[str, str]
) -> str:
    """Get the canonical string representation of a stage invocation that the
    fingerprint is computed from."""
    return json.dumps(
        dict(stage=stage, stores=stores, params=params), sort_keys=True, default=str
    )


def fingerprint(
    stage: str, stores: dict[str, str], params: dict[str, str] = None
) -> str:
    """Compute the fingerprint of a stage invocation.

    Args:
        stage (str): The stage name.
        stores (dict[str, str]): The store names (role plus version prefix, e.g.
            ``substrate-7-0``) keyed by role.
        params (dict[str, str]): Stage-local parameters.

    Returns:
        The hex md5 digest of the invocation representation.
    """
    if params is None:
        params = {}
    representation = invocation_representation(stage, stores, params)
    return hashlib.md5(representation.encode("utf-8")).hexdigest()

"""Molecule synthesis: group related atom recommendations."""

from __future__ import annotations

from collections import Counter, defaultdict
from enum import StrEnum
from pathlib import PurePosixPath
from statistics import mean
from typing import TYPE_CHECKING, Final

from intentledger.domain.errors import ValidationError
from intentledger.domain.model import MoleculeRecommendation

from .inference import molecule_temp_id

if TYPE_CHECKING:
    from collections.abc import Collection, Iterable, Sequence

    from intentledger.domain.model import AtomRecommendation

MIN_MOLECULE_SIZE: Final[int] = 2
MODULE_MARKERS: Final[frozenset[str]] = frozenset({"modules", "components", "pages", "features"})
_DESCRIPTION_SAMPLE: Final[int] = 3


class ClusterMethod(StrEnum):
    MODULE = "module"
    CATEGORY = "category"
    NAMESPACE = "namespace"


def module_key(file_path: str) -> str:
    """``src/modules/billing/x.spec.ts`` -> ``billing``; otherwise the parent directory."""

    path = PurePosixPath(file_path)
    parts = path.parts
    for index, part in enumerate(parts[:-1]):
        if part in MODULE_MARKERS and index + 1 < len(parts) - 1:
            return parts[index + 1]
    parent = path.parent.name
    return parent or "root"


def namespace_key(file_path: str) -> str:
    directories = PurePosixPath(file_path).parts[:-1]
    return "/".join(directories[:2]) or "root"


def cluster_key(atom: AtomRecommendation, method: ClusterMethod) -> str:
    match method:
        case ClusterMethod.MODULE:
            return module_key(atom.source_test.file_path)
        case ClusterMethod.CATEGORY:
            return atom.category
        case ClusterMethod.NAMESPACE:
            return namespace_key(atom.source_test.file_path)


def _molecule_name(key: str, atoms: Sequence[AtomRecommendation]) -> str:
    label = key.replace("-", " ").replace("_", " ").strip() or key
    label = label[:1].upper() + label[1:]
    dominant, _ = Counter(atom.category for atom in atoms).most_common(1)[0]
    if dominant == "security":
        return f"{label} Security"
    if dominant == "performance":
        return f"{label} Performance"
    return f"{label} Functionality"


def _molecule_description(key: str, atoms: Sequence[AtomRecommendation]) -> str:
    sample = "; ".join(atom.description for atom in atoms[:_DESCRIPTION_SAMPLE])
    more = " and more" if len(atoms) > _DESCRIPTION_SAMPLE else ""
    return f"Behaviors related to {key} including: {sample}{more}"


def synthesize_molecules(
    atoms: Sequence[AtomRecommendation],
    *,
    run_id: str,
    method: ClusterMethod = ClusterMethod.MODULE,
    existing: Iterable[MoleculeRecommendation] = (),
    first_index: int = 1,
) -> list[MoleculeRecommendation]:
    """Cluster ``atoms`` into molecule recommendations.

    Clusters smaller than two atoms are skipped, as are clusters whose member
    set matches an existing molecule. Molecule confidence is the rounded mean
    of member confidences; member atoms are left untouched.
    """

    clusters: dict[str, list[AtomRecommendation]] = defaultdict(list)
    for atom in atoms:
        clusters[cluster_key(atom, method)].append(atom)

    known_sets = {frozenset(molecule.atom_temp_ids) for molecule in existing}
    molecules: list[MoleculeRecommendation] = []
    index = first_index
    for key in sorted(clusters):
        members = clusters[key]
        member_ids = [atom.temp_id for atom in members]
        if len(members) < MIN_MOLECULE_SIZE or frozenset(member_ids) in known_sets:
            continue
        molecules.append(
            MoleculeRecommendation(
                run_id=run_id,
                temp_id=molecule_temp_id(index),
                name=_molecule_name(key, members),
                description=_molecule_description(key, members),
                atom_temp_ids=member_ids,
                confidence=round(mean(atom.confidence for atom in members)),
                reasoning=f"Grouped {len(members)} atoms by {method}: {key}",
            )
        )
        index += 1
    return molecules


def check_molecule_integrity(
    molecule: MoleculeRecommendation,
    atom_temp_ids: Collection[str],
) -> None:
    """Every member must exist among the run's atom recommendations."""

    if len(molecule.atom_temp_ids) < MIN_MOLECULE_SIZE:
        raise ValidationError(
            f"Molecule {molecule.temp_id} needs at least {MIN_MOLECULE_SIZE} atoms"
        )
    missing = [ref for ref in molecule.atom_temp_ids if ref not in atom_temp_ids]
    if missing:
        raise ValidationError(
            f"Molecule {molecule.temp_id} references unknown atoms: {', '.join(missing)}"
        )

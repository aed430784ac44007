from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any

import numpy as np
import scipy.sparse as sp

from .base import NetworkMatrix

logger = logging.getLogger(__name__)

_FORMAT_VERSION = 1


def _encode_label(label: Any) -> Any:
    if isinstance(label, (np.integer,)):
        return int(label)
    if isinstance(label, (int, str)):
        return label
    raise TypeError(f"Axis labels must be int or str to be saved; got {type(label)}")


def save_matrix(matrix: NetworkMatrix, path: str | Path) -> Path:
    """
    Save `matrix` to a compressed `.npz` archive.

    The body is stored dense or as CSR parts; axes and metadata are stored as a JSON
    string so no pickling is needed on load.

    Returns
    -------
    Path
        The written file (".npz" is appended when missing).
    """
    p = Path(path)
    if p.suffix != ".npz":
        p = p.with_name(p.name + ".npz")
    p.parent.mkdir(parents=True, exist_ok=True)

    meta = {
        "format_version": _FORMAT_VERSION,
        "kind": matrix.kind,
        "axes": [[_encode_label(x) for x in ax] for ax in matrix.axes],
        "ref_bus_positions": sorted(int(x) for x in matrix.ref_bus_positions),
        "subnetworks": {
            str(k): sorted(int(b) for b in v) for k, v in matrix.subnetworks.items()
        },
        "tol": float(matrix.tol),
        "transposed": bool(matrix.transposed),
        "sparse": bool(matrix.is_sparse),
    }

    arrays: dict[str, Any] = {"meta": np.array(json.dumps(meta))}
    if matrix.is_sparse:
        csr = sp.csr_matrix(matrix.data)
        arrays.update(
            data=csr.data,
            indices=csr.indices,
            indptr=csr.indptr,
            shape=np.asarray(csr.shape, dtype=np.int64),
        )
    else:
        arrays["data"] = np.asarray(matrix.data)

    np.savez_compressed(p, **arrays)
    logger.debug("Saved %s matrix %s to %s", matrix.kind, matrix.data.shape, str(p))
    return p


def load_matrix(path: str | Path) -> NetworkMatrix:
    """Load a matrix written by `save_matrix`."""
    p = Path(path)
    with np.load(p, allow_pickle=False) as z:
        meta = json.loads(str(z["meta"]))
        if int(meta.get("format_version", -1)) != _FORMAT_VERSION:
            raise ValueError(
                f"Unsupported matrix file version {meta.get('format_version')!r} in {p}"
            )
        if meta["sparse"]:
            data: Any = sp.csr_matrix(
                (z["data"], z["indices"], z["indptr"]), shape=tuple(int(x) for x in z["shape"])
            )
        else:
            data = np.array(z["data"])

    rows, cols = meta["axes"]
    matrix = NetworkMatrix(
        kind=str(meta["kind"]),
        data=data,
        axes=(tuple(rows), tuple(cols)),
        ref_bus_positions=frozenset(meta["ref_bus_positions"]),
        subnetworks={int(k): frozenset(v) for k, v in meta["subnetworks"].items()},
        tol=float(meta["tol"]),
        transposed=bool(meta["transposed"]),
    )
    logger.debug("Loaded %s matrix %s from %s", matrix.kind, data.shape, str(p))
    return matrix

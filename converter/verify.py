"""
Sanity checks for YOLO archives produced by the converter.
"""

import zipfile
from pathlib import Path, PurePosixPath
from typing import Optional, Union

import yaml


def _check_line(
    name: str,
    line_num: int,
    tokens: list[str],
    kpt_shape: Optional[list[int]],
) -> list[str]:
    errors = []
    where = f"{name}:{line_num}"

    # First token should be integer class index
    try:
        class_idx = int(tokens[0])
        if class_idx < 0:
            errors.append(f"{where}: Invalid class index {class_idx}")
    except ValueError:
        return [f"{where}: Class index not an integer: {tokens[0]}"]

    values = tokens[1:]
    visibility_positions = set()
    if kpt_shape:
        expected = 4 + kpt_shape[0] * kpt_shape[1]
        if len(values) != expected:
            return [f"{where}: Expected {expected} values for pose, got {len(values)}"]
        if kpt_shape[1] == 3:
            visibility_positions = set(range(6, len(values), 3))
    elif len(values) != 4 and (len(values) < 6 or len(values) % 2 != 0):
        return [
            f"{where}: Bad token count ({len(tokens)}), need 5 (box) "
            f"or an odd count of at least 7 (class + 3 points)"
        ]

    for i, tok in enumerate(values):
        try:
            val = float(tok)
        except ValueError:
            errors.append(f"{where}: Invalid float: {tok}")
            continue
        if i in visibility_positions:
            if val not in (0, 1, 2):
                errors.append(f"{where}: Invalid keypoint visibility {tok}")
        elif val < 0 or val > 1:
            errors.append(f"{where}: Coordinate {i + 1} out of range [0,1]: {val}")

    return errors


def verify_yolo_archive(zip_path: Union[str, Path]) -> tuple[bool, list[str]]:
    """
    Verify a YOLO archive is valid.

    Checks that data.yaml exists and that every label file under
    {split}/labels/ holds well-formed lines with normalized coordinates.

    Args:
        zip_path: Path to the archive

    Returns:
        Tuple of (is_valid, list of error messages)
    """
    errors = []

    try:
        zf = zipfile.ZipFile(zip_path)
    except (OSError, zipfile.BadZipFile) as e:
        return False, [f"Cannot open archive: {e}"]

    with zf:
        names = zf.namelist()
        if "data.yaml" not in names:
            return False, ["data.yaml not found"]

        try:
            config = yaml.safe_load(zf.read("data.yaml")) or {}
        except yaml.YAMLError as e:
            return False, [f"data.yaml is not valid YAML: {e}"]

        kpt_shape = config.get("kpt_shape")

        for name in names:
            path = PurePosixPath(name)
            if path.suffix != ".txt" or len(path.parts) != 3 or path.parts[1] != "labels":
                continue

            text = zf.read(name).decode("utf-8", errors="replace")
            for line_num, line in enumerate(text.splitlines(), 1):
                tokens = line.split()
                if not tokens:
                    continue
                errors.extend(_check_line(name, line_num, tokens, kpt_shape))

    return len(errors) == 0, errors

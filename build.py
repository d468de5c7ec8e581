"""
Package Cliptrack as a windowed executable with PyInstaller.

FFmpeg is not bundled; pydub and the video decoder expect it on PATH.
"""
import os
from pathlib import Path

import PyInstaller.__main__
from PyInstaller.utils.hooks import collect_all

SRC_DIR = Path(__file__).parent.absolute() / "src"

# Imported lazily by the decoders and the export pipeline
HIDDEN_IMPORTS = ["PIL.Image", "PIL.ImageFilter", "pydub.effects", "numpy"]


def pyinstaller_args():
    sep = ";" if os.name == 'nt' else ":"

    # Qt multimedia backends are loaded as plugins, so ship the whole module
    datas, binaries, hidden = collect_all("PyQt6.QtMultimedia")

    args = [
        str(SRC_DIR / "main.py"),
        "--name=Cliptrack",
        "--noconfirm",
        "--clean",
        "--windowed",
        f"--paths={SRC_DIR}",
    ]
    args += [f"--add-data={src}{sep}{dest}" for src, dest in datas]
    args += [f"--add-binary={src}{sep}{dest}" for src, dest in binaries]
    args += [f"--hidden-import={name}" for name in sorted(set(HIDDEN_IMPORTS + hidden))]
    return args


if __name__ == "__main__":
    PyInstaller.__main__.run(pyinstaller_args())

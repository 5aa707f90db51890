"""減色（Xiaolin Wu法）と最近傍パレットへの写像。"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, Tuple

import numpy as np

CHUNK_SIZE = 2048  # 距離行列のメモリ肥大化を防ぐチャンクサイズ
MAX_COLORS = 256
_BINS = 33  # 5bit/チャネル + 累積和用の余白

Cube = Tuple[int, int, int, int, int, int]


@dataclass(frozen=True)
class Palette:
    """最大256色のRGBパレット。並びは量子化器の分割順で決まる。"""

    colors: np.ndarray  # (n, 3) uint8

    def __post_init__(self) -> None:
        if self.colors.ndim != 2 or self.colors.shape[1] != 3:
            raise ValueError("パレットは (n, 3) の配列で指定してください。")
        if not 1 <= len(self.colors) <= MAX_COLORS:
            raise ValueError(f"パレット色数は1〜{MAX_COLORS}です: {len(self.colors)}")

    def __len__(self) -> int:
        return len(self.colors)

    def tobytes(self) -> bytes:
        return self.colors.astype(np.uint8).tobytes()


def _chunk_ranges(length: int, chunk_size: int) -> Iterable[Tuple[int, int]]:
    """0-length区間を返さないチャンク分割のイテレータ。"""
    for start in range(0, length, chunk_size):
        end = min(length, start + chunk_size)
        yield start, end


class _Moments:
    """3Dヒストグラムの累積モーメント。任意の直方体の総和をO(1)で求める。"""

    def __init__(self, pixels: np.ndarray) -> None:
        bins = (pixels >> 3) + 1  # range 1..32
        flat = (bins[:, 0] * _BINS + bins[:, 1]) * _BINS + bins[:, 2]
        size = _BINS ** 3
        shape = (_BINS, _BINS, _BINS)
        px = pixels.astype(np.float64)

        def _hist(weights: np.ndarray | None) -> np.ndarray:
            counts = np.bincount(flat, weights=weights, minlength=size).reshape(shape)
            return counts.cumsum(axis=0).cumsum(axis=1).cumsum(axis=2)

        self.wt = _hist(None)
        self.mr = _hist(px[:, 0])
        self.mg = _hist(px[:, 1])
        self.mb = _hist(px[:, 2])
        self.m2 = _hist((px ** 2).sum(axis=1))
        self.bin_index = (bins[:, 0], bins[:, 1], bins[:, 2])

    @staticmethod
    def volume(cube: Cube, moment: np.ndarray) -> float:
        r0, r1, g0, g1, b0, b1 = cube
        return float(
            moment[r1, g1, b1]
            - moment[r1, g1, b0]
            - moment[r1, g0, b1]
            - moment[r0, g1, b1]
            + moment[r1, g0, b0]
            + moment[r0, g1, b0]
            + moment[r0, g0, b1]
            - moment[r0, g0, b0]
        )

    @staticmethod
    def bottom(cube: Cube, axis: int, moment: np.ndarray) -> float:
        """cutに依存しない側（下端）の部分和。"""
        r0, r1, g0, g1, b0, b1 = cube
        if axis == 0:
            return float(-moment[r0, g1, b1] + moment[r0, g1, b0] + moment[r0, g0, b1] - moment[r0, g0, b0])
        if axis == 1:
            return float(-moment[r1, g0, b1] + moment[r1, g0, b0] + moment[r0, g0, b1] - moment[r0, g0, b0])
        return float(-moment[r1, g1, b0] + moment[r1, g0, b0] + moment[r0, g1, b0] - moment[r0, g0, b0])

    @staticmethod
    def top(cube: Cube, axis: int, cut: int, moment: np.ndarray) -> float:
        """cut位置までの上端側の部分和。"""
        r0, r1, g0, g1, b0, b1 = cube
        if axis == 0:
            return float(moment[cut, g1, b1] - moment[cut, g1, b0] - moment[cut, g0, b1] + moment[cut, g0, b0])
        if axis == 1:
            return float(moment[r1, cut, b1] - moment[r1, cut, b0] - moment[r0, cut, b1] + moment[r0, cut, b0])
        return float(moment[r1, g1, cut] - moment[r1, g0, cut] - moment[r0, g1, cut] + moment[r0, g0, cut])

    def variance(self, cube: Cube) -> float:
        w = self.volume(cube, self.wt)
        if w == 0:
            return 0.0
        r = self.volume(cube, self.mr)
        g = self.volume(cube, self.mg)
        b = self.volume(cube, self.mb)
        return self.volume(cube, self.m2) - (r * r + g * g + b * b) / w

    def cut(self, cube: Cube) -> tuple[Cube, Cube] | None:
        """分散減少が最大となる軸と位置で箱を2つに割る。割れなければNone。"""
        whole = [self.volume(cube, m) for m in (self.wt, self.mr, self.mg, self.mb)]
        if whole[0] == 0:
            return None

        best_score = 0.0
        best: tuple[int, int] | None = None
        moments = (self.wt, self.mr, self.mg, self.mb)
        for axis in range(3):
            lo, hi = cube[axis * 2], cube[axis * 2 + 1]
            base = [self.bottom(cube, axis, m) for m in moments]
            for cut in range(lo + 1, hi):
                w0, r0, g0, b0 = (base[i] + self.top(cube, axis, cut, m) for i, m in enumerate(moments))
                w1 = whole[0] - w0
                if w0 == 0 or w1 == 0:
                    continue
                r1, g1, b1 = whole[1] - r0, whole[2] - g0, whole[3] - b0
                score = (r0 * r0 + g0 * g0 + b0 * b0) / w0 + (r1 * r1 + g1 * g1 + b1 * b1) / w1
                if score > best_score:
                    best_score = score
                    best = (axis, cut)

        if best is None:
            return None
        axis, cut = best
        first = list(cube)
        second = list(cube)
        first[axis * 2 + 1] = cut
        second[axis * 2] = cut
        return tuple(first), tuple(second)  # type: ignore[return-value]


def quantize_wu(pixels_rgb: np.ndarray, max_colors: int = MAX_COLORS) -> Palette:
    """Xiaolin Wu 法で最大max_colors色のパレットを作る。同じ入力なら同じ結果。"""
    pixels = pixels_rgb.reshape(-1, 3).astype(np.int64)
    if pixels.size == 0:
        raise ValueError("画素がありません。")
    max_colors = max(1, min(int(max_colors), MAX_COLORS))
    moments = _Moments(pixels)

    # 初期キューブは全域 (0,32]（0はプレフィックス用の余白）
    cubes: list[Cube] = [(0, 32, 0, 32, 0, 32)]
    variances = [moments.variance(cubes[0])]
    while len(cubes) < max_colors:
        split_idx = int(np.argmax(variances))
        if variances[split_idx] <= 0.0:
            break  # どの箱もこれ以上分割する意味がない
        halves = moments.cut(cubes[split_idx])
        if halves is None:
            variances[split_idx] = 0.0
            continue
        first, second = halves
        cubes[split_idx] = first
        cubes.append(second)
        variances[split_idx] = moments.variance(first)
        variances.append(moments.variance(second))

    colors = np.zeros((len(cubes), 3), dtype=np.float64)
    for idx, cube in enumerate(cubes):
        w = moments.volume(cube, moments.wt)
        if w == 0:
            # 空の箱は近似値として境界中点を入れる
            colors[idx] = [(cube[0] + cube[1]) * 4.0, (cube[2] + cube[3]) * 4.0, (cube[4] + cube[5]) * 4.0]
        else:
            colors[idx] = [
                moments.volume(cube, moments.mr) / w,
                moments.volume(cube, moments.mg) / w,
                moments.volume(cube, moments.mb) / w,
            ]
    return Palette(colors=np.clip(np.rint(colors), 0, 255).astype(np.uint8))


def map_to_palette(pixels_rgb: np.ndarray, palette: Palette) -> np.ndarray:
    """各画素を最短距離（RGB二乗距離）のパレット番号へ写像する。"""
    shape = pixels_rgb.shape[:2]
    flat = pixels_rgb.reshape(-1, 3).astype(np.int64)
    # 同じ色は一度だけ距離計算する
    keys = (flat[:, 0] << 16) | (flat[:, 1] << 8) | flat[:, 2]
    unique_keys, inv = np.unique(keys, return_inverse=True)
    colors = np.stack(
        [(unique_keys >> 16) & 0xFF, (unique_keys >> 8) & 0xFF, unique_keys & 0xFF], axis=1
    ).astype(np.float32)
    targets = palette.colors.astype(np.float32)

    mapping = np.zeros(len(colors), dtype=np.uint8)
    for idx0, idx1 in _chunk_ranges(len(colors), CHUNK_SIZE):
        diff = colors[idx0:idx1, None, :] - targets[None, :, :]
        distances = np.sum(diff ** 2, axis=2)
        mapping[idx0:idx1] = np.argmin(distances, axis=1)
    return mapping[inv.reshape(-1)].reshape(shape)

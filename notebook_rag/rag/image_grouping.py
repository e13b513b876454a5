"""
Image Grouping Strategies
=========================
다중 이미지 다이어그램이 여러 청크로 쪼개지지 않도록 관련 이미지를 묶습니다.

전략:
- SpatialClusteringStrategy: 같은 페이지에서 유클리드 거리 임계값 이내 이미지를
  단일 연결(union-find) 방식으로 전이적으로 묶음 (기본)
- PageBasedGroupingStrategy: 같은 페이지의 이미지를 모두 한 그룹으로 묶음

page_number < 0 인 이미지(PDF가 아닌 문서)는 그룹화하지 않습니다.
그룹에 속하지 않은 이미지의 spatial_group_id는 -1입니다.
"""

import logging
import math
from dataclasses import replace
from typing import Protocol

from notebook_rag.domain.value_objects import ExtractedImage

logger = logging.getLogger(__name__)


class ImageGroupingStrategy(Protocol):
    name: str

    def group_images(self, images: list[ExtractedImage]) -> list[ExtractedImage]:
        """그룹 ID가 지정된 이미지 사본 리스트 반환"""
        ...


def _by_page(images: list[ExtractedImage]) -> dict[int, list[ExtractedImage]]:
    pages: dict[int, list[ExtractedImage]] = {}
    for image in images:
        pages.setdefault(image.page_number, []).append(image)
    return pages


class _UnionFind:
    """경로 압축 + 랭크 기반 합집합"""

    def __init__(self, size: int):
        self.parent = list(range(size))
        self.rank = [0] * size

    def find(self, x: int) -> int:
        while self.parent[x] != x:
            self.parent[x] = self.parent[self.parent[x]]
            x = self.parent[x]
        return x

    def union(self, x: int, y: int) -> None:
        root_x, root_y = self.find(x), self.find(y)
        if root_x == root_y:
            return
        if self.rank[root_x] < self.rank[root_y]:
            root_x, root_y = root_y, root_x
        self.parent[root_y] = root_x
        if self.rank[root_x] == self.rank[root_y]:
            self.rank[root_x] += 1


class SpatialClusteringStrategy:
    """
    거리 기반 단일 연결 클러스터링

    Args:
        threshold: 같은 그룹으로 볼 최대 거리 (PDF 좌표 단위)
        min_group_size: 그룹으로 인정할 최소 이미지 수
    """

    name = "spatial"

    def __init__(self, threshold: float = 100.0, min_group_size: int = 2):
        self.threshold = threshold
        self.min_group_size = min_group_size

    def group_images(self, images: list[ExtractedImage]) -> list[ExtractedImage]:
        if not images:
            return []

        result: list[ExtractedImage] = []
        next_group_id = 0

        for page, page_images in _by_page(images).items():
            if page < 0 or len(page_images) < self.min_group_size:
                result.extend(page_images)
                continue

            for cluster in self._cluster(page_images):
                if len(cluster) >= self.min_group_size:
                    group_id = next_group_id
                    next_group_id += 1
                    logger.debug(
                        f"Created spatial group {group_id} with {len(cluster)} images on page {page}"
                    )
                    result.extend(replace(page_images[i], spatial_group_id=group_id) for i in cluster)
                else:
                    result.extend(page_images[i] for i in cluster)

        logger.debug(f"Grouped {len(images)} images into {next_group_id} spatial groups")
        return result

    def _cluster(self, images: list[ExtractedImage]) -> list[list[int]]:
        """클러스터 리스트 (각 클러스터는 인덱스 오름차순, 클러스터는 첫 인덱스 순)"""
        uf = _UnionFind(len(images))
        for i in range(len(images)):
            for j in range(i + 1, len(images)):
                distance = math.hypot(images[i].x - images[j].x, images[i].y - images[j].y)
                if distance <= self.threshold:
                    uf.union(i, j)

        clusters: dict[int, list[int]] = {}
        for i in range(len(images)):
            clusters.setdefault(uf.find(i), []).append(i)
        return sorted(clusters.values(), key=lambda members: members[0])


class PageBasedGroupingStrategy:
    """페이지 단위 그룹화 (공간 정보가 부정확한 문서용)"""

    name = "page-based"

    def __init__(self, min_group_size: int = 2):
        self.min_group_size = min_group_size

    def group_images(self, images: list[ExtractedImage]) -> list[ExtractedImage]:
        if not images:
            return []

        result: list[ExtractedImage] = []
        next_group_id = 0

        for page, page_images in _by_page(images).items():
            if page < 0 or len(page_images) < self.min_group_size:
                result.extend(page_images)
                continue
            result.extend(replace(image, spatial_group_id=next_group_id) for image in page_images)
            next_group_id += 1

        logger.debug(f"Grouped {len(images)} images into {next_group_id} page-based groups")
        return result


def create_grouping_strategy(
    strategy: str = "spatial", threshold: float = 100.0, min_group_size: int = 2
) -> ImageGroupingStrategy:
    if strategy == "page-based":
        return PageBasedGroupingStrategy(min_group_size=min_group_size)
    return SpatialClusteringStrategy(threshold=threshold, min_group_size=min_group_size)

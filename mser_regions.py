from component_tree import MaxTreeComponentSource
from mser_builder import EvaluationNodeBuilder
from mser_evaluation import MinimaCollector
from mser_filter import RegionFilter
import numpy as np
from typing import List, Tuple, Dict, Any
import cv2
import os
import glob
import json
from multiprocessing import Pool, cpu_count
from functools import partial


class MserRegions:
    def __init__(self, delta: int = 5, min_size: int = 60, max_size_ratio: float = 0.25,
                 max_variation: float = 0.25, max_dim: int = 600):
        """
        Configure the MSER detector.

        Args:
            delta (int): Stability window in gray levels
            min_size (int): Minimum region size in pixels
            max_size_ratio (float): Maximum region size as a fraction of the image
            max_variation (float): Maximum MSER score of a reported region
            max_dim (int): Images are downscaled so their larger side is at most this

        Raises:
            ValueError: On out of range parameters
        """
        if delta < 0:
            raise ValueError(f"delta must be non-negative, got {delta}")
        if min_size < 0:
            raise ValueError(f"min_size must be non-negative, got {min_size}")
        if not 0 < max_size_ratio <= 1:
            raise ValueError(f"max_size_ratio must be in (0, 1], got {max_size_ratio}")
        if max_variation < 0:
            raise ValueError(f"max_variation must be non-negative, got {max_variation}")
        if max_dim <= 0:
            raise ValueError(f"max_dim must be positive, got {max_dim}")
        self.delta = delta
        self.min_size = min_size
        self.max_size_ratio = max_size_ratio
        self.max_variation = max_variation
        self.max_dim = max_dim

    def process_folder(self, input_folder: str, output_folder: str, num_workers: int = None) -> Dict[str, List[Dict[str, int]]]:
        """
        Process all images in a folder and save detected regions as JSON.

        Args:
            input_folder (str): Path to folder containing images
            output_folder (str): Path to save output JSON file
            num_workers (int): Number of parallel processes (default: CPU count)
        """
        if not os.path.exists(output_folder):
            os.makedirs(output_folder, exist_ok=True)

        if num_workers is None:
            num_workers = cpu_count()

        image_paths = sorted(glob.glob(os.path.join(input_folder, '*.*')))

        if not image_paths:
            print(f"No images found in {input_folder}")
            return {}

        print(f"Processing {len(image_paths)} images with {num_workers} workers...")

        with Pool(num_workers) as pool:
            process_func = partial(MserRegions._process_single_image, self)
            results = pool.map(process_func, image_paths)

        all_regions = {os.path.basename(path): regions for path, regions in results}

        # one bbox per line
        output_file = os.path.join(output_folder, 'regions.json')
        with open(output_file, 'w') as f:
            f.write('{\n')
            for idx, (filename, regions) in enumerate(all_regions.items()):
                f.write(f'  "{filename}": [\n')
                for bbox_idx, bbox in enumerate(regions):
                    bbox_str = json.dumps(bbox)
                    trailing_comma = ',' if bbox_idx < len(regions) - 1 else ''
                    f.write(f'    {bbox_str}{trailing_comma}\n')
                f.write(f'  ]')
                trailing_comma = ',' if idx < len(all_regions) - 1 else ''
                f.write(f'{trailing_comma}\n')
            f.write('}\n')

        print(f"✓ Saved regions to {output_file}")
        return all_regions

    def _process_single_image(self, image_path: str) -> Tuple[str, List[Dict[str, int]]]:
        """
        Process a single image and return its regions.
        Runs in a worker process.

        Args:
            image_path (str): Path to image file

        Returns:
            Tuple of (image_path, regions_list)
        """
        try:
            image = cv2.imread(image_path)
            if image is None:
                print(f"Warning: Could not read {image_path}")
                return image_path, []

            rects = self.get_regions(image)

            regions_list = [
                {'x': int(x), 'y': int(y), 'w': int(w), 'h': int(h)}
                for x, y, w, h in rects
            ]

            return image_path, regions_list
        except Exception as e:
            print(f"Error processing {image_path}: {e}")
            return image_path, []

    def detect_regions(self, gray: np.ndarray, dark_to_bright: bool = True) -> List[Dict[str, Any]]:
        """
        Run MSER detection on one polarity of a grayscale image.

        Args:
            gray (np.ndarray): Integer grayscale image
            dark_to_bright (bool): Detect dark regions on bright background if
                True, bright regions on dark background otherwise

        Returns:
            List of dicts with keys 'value' (gray threshold of the region in
            the input image), 'level' (sweep level, equal to 'value' for
            dark_to_bright and max(gray) - 'value' otherwise), 'size',
            'score', 'bbox' (y_min, y_max, x_min, x_max) and 'indices'
            (flat pixel indices)
        """
        source = MaxTreeComponentSource(gray, dark_to_bright=dark_to_bright)
        collector = MinimaCollector()
        max_size = max(self.min_size, int(gray.size * self.max_size_ratio))
        region_filter = RegionFilter(self.min_size, max_size, self.max_variation, collector)
        builder = EvaluationNodeBuilder(self.delta, region_filter)
        builder.run(source.components())

        regions = []
        for node in collector.minima:
            indices = source.region_pixels(node.component_id)
            (y_min, y_max), (x_min, x_max) = source.get_bounding_box(indices)
            regions.append({
                'value': source.pixel_value(node.value),
                'level': node.value,
                'size': node.size,
                'score': node.score,
                'bbox': (y_min, y_max, x_min, x_max),
                'indices': indices,
            })
        return regions

    def process_image(self, image: np.ndarray) -> List[Tuple[int, int, int, int]]:
        """
        Process image through preprocessing, MSER detection in both polarities and postprocessing.

        Args:
            image (np.ndarray): Grayscale or RGB image

        Returns:
            List of (x, y, w, h) regions in original image coordinates
        """
        if image.ndim == 3:
            image = cv2.cvtColor(image, cv2.COLOR_RGB2GRAY)
        resized_image, scaling_factor = self.preprocess_image(image)

        bboxes = []
        for dark_to_bright in (True, False):
            bboxes.extend(r['bbox'] for r in self.detect_regions(resized_image, dark_to_bright))

        rects = self._convert_bbox_format(bboxes)
        return self.resize_rects(rects, scaling_factor)

    def _convert_bbox_format(self, bboxes: List[Tuple[int, int, int, int]]) -> List[Tuple[int, int, int, int]]:
        """
        Convert from inclusive (y_min, y_max, x_min, x_max) to (x, y, w, h) format.
        """
        converted = []
        for y_min, y_max, x_min, x_max in bboxes:
            w = x_max - x_min + 1
            h = y_max - y_min + 1
            converted.append((x_min, y_min, w, h))
        return converted

    def get_regions(self, image: np.ndarray) -> List[Tuple[int, int, int, int]]:
        """
        Extract MSER regions from a single image.

        Args:
            image (np.ndarray): Input image (BGR from cv2)

        Returns:
            List of (x, y, w, h) tuples
        """
        if image.ndim == 3:
            image = cv2.cvtColor(image, cv2.COLOR_BGR2GRAY)
        return self.process_image(image)

    def preprocess_image(self, image: np.ndarray) -> Tuple[np.ndarray, float]:
        """
        Resize image for faster processing and make sure it is 8-bit.

        Returns:
            Tuple of (resized_image, scaling_factor)
        """
        if image.dtype != np.uint8:
            lo, hi = float(image.min()), float(image.max())
            scale = 255.0 / (hi - lo) if hi > lo else 0.0
            image = np.round((image.astype(np.float64) - lo) * scale).astype(np.uint8)

        height, width = image.shape[:2]
        if max(height, width) > self.max_dim:
            scaling_factor = self.max_dim / float(max(height, width))
            new_size = (int(width * scaling_factor), int(height * scaling_factor))
            image = cv2.resize(image, new_size, interpolation=cv2.INTER_AREA)
        else:
            scaling_factor = 1.0
        return image, scaling_factor

    def resize_rects(self, rects: List[Tuple[int, int, int, int]], scaling_factor: float) -> List[Tuple[int, int, int, int]]:
        """
        Scale rectangle coordinates back to original image size.
        """
        if scaling_factor == 1.0:
            return rects
        resized_rects = []
        for (x, y, w, h) in rects:
            new_x = int(x / scaling_factor)
            new_y = int(y / scaling_factor)
            new_w = int(w / scaling_factor)
            new_h = int(h / scaling_factor)
            resized_rects.append((new_x, new_y, new_w, new_h))
        return resized_rects

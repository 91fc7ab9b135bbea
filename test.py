from mser_regions import MserRegions
from component_tree import MaxTreeComponentSource
from mser_builder import EvaluationNodeBuilder
from mser_evaluation import MinimaCollector
import matplotlib.image as mpimg
import matplotlib.pyplot as plt
import cv2

def folder_test():
    input_folder = "img"
    output_folder = "regions"

    MserRegions().process_folder(input_folder, output_folder)

def image_test():
    mser = MserRegions()

    img = mpimg.imread("img/image_57540.jpg")

    bb = mser.process_image(img)

    plt.imshow(img)
    for box in bb:
        x, y, w, h = box
        rect = plt.Rectangle((x, y), w, h, edgecolor='r', facecolor='none', linewidth=1)
        plt.gca().add_patch(rect)
    plt.show()

def history_test():
    gray = cv2.imread("img/image_57540.jpg", cv2.IMREAD_GRAYSCALE)
    gray, _ = MserRegions().preprocess_image(gray)

    source = MaxTreeComponentSource(gray)
    collector = MinimaCollector()
    builder = EvaluationNodeBuilder(5, collector)
    builder.run(source.components())

    # score history of the largest raw minimum
    node = max(collector.minima, key=lambda n: n.size)
    values, sizes, scores = builder.graph.history_arrays(node.handle)

    fig, (ax1, ax2) = plt.subplots(1, 2, figsize=(10, 4))
    ax1.imshow(source.region_mask(node.component_id), cmap='gray')
    ax2.plot(values, scores)
    ax2.axvline(node.value, color='r')
    ax2.set_xlabel('threshold')
    ax2.set_ylabel('score')
    plt.show()



if __name__ == "__main__":
    input_folder = "img"
    output_folder = "regions"

    folder_test()
    image_test()
    history_test()

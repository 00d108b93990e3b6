"""
Default values for the visual geolocalization runner.

These defaults define the values used throughout the pipeline when the operator
does not supply them. They can be overridden by command-line arguments, a JSON
config file, environment variables or interactive answers.
"""

SCRIPT_NAME = 'vgl'
SCRIPT_VERSION = '2.0.0'

# Workspace
DEFAULT_VGL_DIR = './vgl_data'
WORKSPACE_SUBDIRECTORIES = ('query', 'map', 'output')
STITCHED_SUBDIRECTORY = 'stitched'
LOGS_SUBDIRECTORY = 'logs'
RUN_CONFIG_FILENAME = 'run_config.json'

# Satellite download
DEFAULT_STITCH_SIZE = 8
# Example region shown at the prompt (top-left lat, top-left lon, bottom-right lat, bottom-right lon)
DEFAULT_BOUNDING_BOX = (37.300264, -3.688755, 37.294684, -3.676445)
API_KEY_ENV = 'MAPTILER_API_KEY'

# Mode selection: GSD at or above this value (cm/pixel) must use high altitude mode
GSD_HIGH_ALTITUDE_THRESHOLD = 20.0

# Container images
DEFAULT_REGISTRY = 'ghcr.io/josehinojosahidalgo'
DEFAULT_IMAGE_TAG = 'jetson_vgl:1.0'
DEFAULT_JETSON_IMAGE_TAG = 'jetson_vgl:1.0_orin'
REGISTRY_ENV = 'VGL_REGISTRY'
IMAGE_TAG_ENV = 'VGL_IMAGE_TAG'
CONTAINER_DATA_DIR = '/app/data'

ODM_CPU_IMAGE = 'opendronemap/odm'
ODM_GPU_IMAGE = 'opendronemap/odm:gpu'
ODM_JETSON_IMAGE = 'ghcr.io/josehinojosahidalgo/odm_orin:1.0'
ODM_JETSON_SCRIPT = '/code/run_odm_orin.sh'
ODM_JETSON_FEATURE_LIMITS = (8000, 16000)
ODM_DATASETS_DIR = '/datasets'
# Quality/speed policy for the orthophoto stage, not operator tunable
ODM_QUALITY_FLAGS = ('--fast-orthophoto', '--skip-band-alignment', '--skip-report')

IMAGEMAGICK_IMAGE = 'dpokidov/imagemagick'
LOCAL_CONVERTER = 'convert'

# Launchers per platform
CONTAINER_LAUNCHERS = {
    'x86': ('docker', 'run'),
    'jetson': ('jetson-containers', 'run'),
}
DEFAULT_PLATFORM = 'x86'

# ODM project layout
ODM_IMAGES_SUBDIRECTORY = 'images'
ODM_ORTHOPHOTO_RELATIVE_PATH = ('odm_orthophoto', 'odm_orthophoto.tif')
ACCEPTED_INPUT_EXTENSIONS = ('jpg', 'jpeg', 'png', 'mp4', 'JPG', 'JPEG', 'PNG', 'MP4')

# Orthophoto conversion output
DEFAULT_ORTHOPHOTO_OUTPUT = 'orthophoto.png'

# Container runtime liveness probe
RUNTIME_PROBE_TIMEOUT = 30

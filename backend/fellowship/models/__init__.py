# Importe les modèles de la base canonique pour enregistrer leurs tables dans Base.metadata
# avant create_all / l'import des routers. La file offline a sa propre base (QueueBase).

from fellowship.models.session import AttendanceSession  # noqa: F401
from fellowship.models.attendance import Attendance  # noqa: F401

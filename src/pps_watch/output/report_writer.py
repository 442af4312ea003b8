"""
Report File Writer for pps-watch

Writes the latest WatchReport of every watched source to a single JSON
file, keyed by device path, so monitoring scripts can poll it.

The file is updated atomically (write to temp, rename) to prevent
partial reads.

Usage:
    writer = ReportWriter('/run/pps-watch/report.json')
    writer.write(report)
"""

import json
import logging
import os
import tempfile
import threading
from pathlib import Path
from typing import Dict, Optional

from ..interfaces.watch_report import WatchReport

logger = logging.getLogger(__name__)


class ReportWriter:
    """
    Writes WatchReports to a JSON file.
    
    Safe to share between the per-source acquisition threads.
    """
    
    def __init__(self, path: str):
        """
        Initialize report writer.
        
        Args:
            path: Destination file; its directory is created if missing
        """
        self.path = Path(path)
        self.write_count = 0
        self._reports: Dict[str, dict] = {}
        self._lock = threading.Lock()
        
        self.path.parent.mkdir(parents=True, exist_ok=True)
        
        logger.info(f"ReportWriter initialized: {self.path}")
    
    def write(self, report: WatchReport) -> bool:
        """
        Record a source's report and rewrite the file.
        
        Returns:
            True if successful, False on error
        """
        with self._lock:
            self._reports[report.device] = report.to_dict()
            json_data = json.dumps({"sources": self._reports}, indent=2)
            
            try:
                # Temp file in same directory (required for atomic rename)
                fd, temp_path = tempfile.mkstemp(
                    dir=self.path.parent,
                    prefix='.pps_watch_',
                    suffix='.tmp'
                )
                
                try:
                    with os.fdopen(fd, 'w') as f:
                        f.write(json_data)
                    os.rename(temp_path, self.path)
                except OSError:
                    if os.path.exists(temp_path):
                        os.unlink(temp_path)
                    raise
                
                self.write_count += 1
                logger.debug(
                    f"Report write #{self.write_count}: {report.device} "
                    f"total={report.total}"
                )
                return True
                
            except OSError as e:
                logger.error(f"Failed to write report file {self.path}: {e}")
                return False
    
    def read(self) -> Optional[Dict[str, WatchReport]]:
        """
        Read the report file back.
        
        Returns:
            Reports by device, or None if the file is missing or invalid
        """
        try:
            if not self.path.exists():
                return None
            
            with open(self.path, 'r') as f:
                data = json.load(f)
            
            return {
                device: WatchReport.from_json(json.dumps(entry))
                for device, entry in data.get("sources", {}).items()
            }
            
        except (OSError, ValueError, TypeError) as e:
            logger.warning(f"Failed to read report file {self.path}: {e}")
            return None

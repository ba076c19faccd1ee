"""
the uWSGI script for launching the repository web service.

This script launches the web service using uwsgi.  For example, one can
launch the service with the following command:

  SCHOLARSPHERE_CONFIG=scholarsphere_conf.yml \
  uwsgi --plugin python3 --http-socket :9090 --wsgi-file scholarsphere-uwsgi.py

See the documentation for scholarsphere.repo and scholarsphere.repo.wsgi for the configuration
parameters supported by this service.

This script also pays attention to the following environment variables:

   SCHOLARSPHERE_CONFIG       The location (file path or URL) of the configuration data
   SCHOLARSPHERE_WORKING_DIR  The directory to use as the working directory (where the log file
                                 and, by default, a file-based store are written)
   SCHOLARSPHERE_MONGODB_URL  The URL of the MongoDB database to use as the object store; this
                                 overrides the ``store.db_url`` configuration parameter
"""
import os, logging

import scholarsphere
from scholarsphere import config
from scholarsphere.repo import Repository
from scholarsphere.repo import wsgi

cfg = config.resolve_configuration()

workdir = os.environ.get("SCHOLARSPHERE_WORKING_DIR")
if workdir:
    cfg['working_dir'] = workdir
config.configure_log(config=cfg)

storecfg = cfg.setdefault('store', {})
if storecfg.get('factory') == "fsbased" and not storecfg.get('root_dir'):
    storecfg['root_dir'] = os.path.join(cfg.get('working_dir', '.'), "store")
    if not os.path.exists(storecfg['root_dir']):
        os.makedirs(storecfg['root_dir'])

repository = Repository(cfg)
repository.connect()
application = wsgi.app(cfg, repository)

msg = "ScholarSphere service (v%s) ready with %s backend" % \
      (scholarsphere.__version__, storecfg.get('factory', 'inmem'))
print(msg)
logging.info(msg)

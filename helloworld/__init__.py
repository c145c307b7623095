version = 'HelloWorld Overlay 1.0.0'
version_short = version.split()[-1]


def _lazy_import(name):
    """Lazy import to avoid pulling in the storage engines at module load time."""
    import importlib
    if name == 'LookupService':
        mod = importlib.import_module('helloworld.server.lookup_service')
        return mod.LookupService
    if name == 'TopicManager':
        mod = importlib.import_module('helloworld.server.topic_manager')
        return mod.TopicManager
    if name == 'Env':
        mod = importlib.import_module('helloworld.server.env')
        return mod.Env
    raise AttributeError(f'module {__name__!r} has no attribute {name!r}')


def __getattr__(name):
    return _lazy_import(name)

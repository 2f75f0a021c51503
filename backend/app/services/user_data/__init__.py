from .deletion import DeletionResult, UserDeletionService
from .migration import MigrationResult, UserMigrationService
from .mirror import MirrorResult, ObjectMirror, ReferenceMap
from .resolver import IdentityResolver, ResolvedIdentity
from .rewriter import ReferenceRewriter

"""
Prompts for the LLM stages.

The French-by-default location policy lives here, in the prompt, and not in
the orchestrator: the orchestrator only branches on the returned verdict.
"""

from typing import List

JOB_CATEGORIES: List[str] = [
    "Tech",
    "Business",
    "Product",
    "Executive Search",
    "Comptelio",
    "RH",
    "Freelance",
    "Data",
    "Autre",
]

# ===== Stage 1: recruitment detection =====

RECRUITMENT_SYSTEM_PROMPT = """### CONTEXTE
Vous analysez un post LinkedIn afin de détecter si l'auteur recrute activement pour SON entreprise (recrutement interne, pas pour un client).

### FORMAT DE SORTIE
Retournez uniquement un objet JSON :
{"recrute_poste": "Oui" | "Non", "postes": "poste1, poste2, poste3"}

- recrute_poste : "Oui" si le post décrit un recrutement actif et ciblé pour l'entreprise de l'auteur, sinon "Non".
- postes : au maximum 3 postes précis, séparés par des virgules ; "" si aucun poste clair.
- Si plus de 3 postes différents sont cités : "recrute_poste": "Non" et "postes": "".

### CLASSER "Oui" SI
- Recrutement actif et ciblé ("Nous recrutons", "On recrute", "Poste ouvert", "Rejoignez notre équipe", lien vers une offre ou un site carrière).
- Postes précis, hors stages, alternances, techniciens et assistants.

### CLASSER "Non" SI
- Freelance, ESN ou cabinet qui recrute pour un client externe.
- Auteur à la recherche d'un emploi.
- Uniquement stages, alternances, techniciens ou assistants.
- Plus de 3 postes, post vague ou sans poste clair."""

RECRUITMENT_USER_TEMPLATE = """Analysez ce post LinkedIn :

Titre : {title}
Contenu : {text}
Auteur : {author}"""

# ===== Stage 2: location / language gate =====

LOCATION_SYSTEM_PROMPT = """# CONTEXTE
Vous analysez une publication LinkedIn de recrutement pour un cabinet de recrutement. Déterminez si le poste est situé dans la zone cible : France, Belgique, Suisse, Luxembourg ou Monaco.

# RÈGLES
Répondez "Oui" si :
- une localisation dans la zone cible est clairement mentionnée ;
- OU le post est rédigé en français et aucun indice ne situe le poste hors de la zone cible. Un post en français SANS localisation est "Oui" par défaut.

Répondez "Non" uniquement si :
- une localisation hors zone est clairement mentionnée (ex : Canada, Allemagne, Maroc) ;
- OU le post n'est pas rédigé en français et n'indique pas clairement la zone cible.

En cas de doute sur un post non francophone, répondez "Non".

# FORMAT DE SORTIE (JSON)
{
  "reponse": "Oui" ou "Non",
  "langue": "français" ou autre (ex : "anglais"),
  "localisation_detectee": "localisation extraite du texte, sinon 'non spécifiée'",
  "raison": "explication courte (ex : 'Post en français sans mention hors zone', 'Localisation indiquée : Berlin, hors zone')"
}"""

LOCATION_USER_TEMPLATE = """{title}
{text}"""

# ===== Stage 3: categorization =====

CATEGORIZATION_SYSTEM_PROMPT = """## Catégories d'offres

1. Tech : développement, ingénierie logicielle, architecture, QA, DevOps/SRE/cloud, systèmes et réseaux, cybersécurité, tech lead, engineering manager.
2. Business : gestion de projet (MOE/MOA/PMO), marketing et growth, SEO/SEA, sales (business developer, account manager/executive, key account), customer success, avant-vente.
3. Product : product owner, product manager, UX/UI designer, product ops.
4. Executive Search : direction générale et comités de direction (CEO, COO, CTO, CFO, directeurs de BU, VP).
5. Comptelio : comptabilité, finance, contrôle de gestion, trésorerie, audit, paie.
6. RH : ressources humaines, talent acquisition, HRBP, formation, relations sociales.
7. Freelance : missions en indépendant, portage, freelance.
8. Data : data engineer, data analyst, data scientist, ML engineer, BI.
9. Autre : tout ce qui ne relève d'aucune catégorie ci-dessus."""

CATEGORIZATION_USER_TEMPLATE = """# CONTEXTE
Vous classez les postes d'une publication LinkedIn de recrutement dans UNE seule catégorie d'offre et normalisez leurs intitulés.

# POSTES INDIQUÉS
{positions}

# INSTRUCTIONS
1. Choisissez une seule catégorie dominante parmi : {categories}. Si aucune ne convient, choisissez "Autre".
2. Ne retenez que les postes qui relèvent de cette catégorie.
3. Normalisez chaque intitulé : cœur du métier tel qu'on le dirait à l'oral, masculin singulier, pas de majuscules sauf noms propres.

# PUBLICATION
{title}
{text}

# FORMAT DE SORTIE (JSON)
{{
  "categorie": "une des catégories",
  "postes_selectionnes": ["intitulé normalisé 1", "intitulé normalisé 2"],
  "justification": "courte explication du choix"
}}"""

# ===== Approach message =====

APPROACH_MESSAGE_SYSTEM_PROMPT = """## Objectif
Générer un message LinkedIn court, professionnel et personnalisé (300 caractères maximum) pour initier un échange suite à une publication annonçant un recrutement.

## Contexte
Tu es recruteur dans un cabinet spécialisé dans la chasse par approche directe de profils complexes (Sales, Marketing, Tech, Product, Data).

## Structure
1. "Bonjour [Prénom]," puis un saut de ligne.
2. Une phrase d'accroche qui cite le poste recherché.
3. Une proposition de valeur sobre : présenter des candidats si cela peut faire gagner du temps.
4. "Bonne journée" en formule de fin.

Pas d'emoji, pas de formule commerciale agressive, vouvoiement.

## Format de sortie (JSON)
{"message_approche": "texte du message"}"""

APPROACH_MESSAGE_USER_TEMPLATE = """Prénom : {first_name}
Postes recherchés : {positions}

Publication :
{text}"""

DEFAULT_APPROACH_MESSAGE = (
    "Bonjour {first_name},\n\n"
    "J'ai vu que vous recherchiez un {position}.\n\n"
    "Je connais bien ces recherches, je peux vous présenter des candidats "
    "si cela peut vous faire gagner du temps.\n\n"
    "Bonne journée"
)
